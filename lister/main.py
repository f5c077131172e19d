"""
Product Lister: CLI driver

Usage:
  python -m lister.main settings --api-key KEY --brand "Acme" --tone casual
  python -m lister.main edit photo.jpg
  python -m lister.main imagine "hand-thrown ceramic mug, speckled glaze"
  python -m lister.main products
  python -m lister.main listing <ID> --platform etsy
  python -m lister.main seo <ID>
"""

from __future__ import annotations

import argparse
import asyncio
import inspect
import logging
import sys
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.rule import Rule
from rich.table import Table

from .artifacts import ArtifactStore, open_artifact_store
from .catalog import CatalogStore
from .config import AppConfig
from .errors import ListerError, PreconditionFailed
from .listing import ListingDraft, ListingWorkflow
from .models import PLATFORMS, TONES, ChatMessage, Product
from .session import SessionOrchestrator

console = Console()

logger = logging.getLogger(__name__)


# ── CLI ───────────────────────────────────────────────────────────────────────

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Product Lister: AI photo editing and listing copy for online shops"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log at INFO level")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("settings", help="Show or change settings")
    p.add_argument("--api-key", default=None, help="Gemini API key")
    p.add_argument("--brand", default=None, help="Brand name used in listings")
    p.add_argument("--colors", default=None, help="Comma-separated brand colors")
    p.add_argument("--tone", choices=TONES, default=None, help="Default tone of voice")
    tier = p.add_mutually_exclusive_group()
    tier.add_argument("--quality", dest="prefer_quality", action="store_true", default=None,
                      help="Prefer the quality image model")
    tier.add_argument("--fast", dest="prefer_quality", action="store_false",
                      help="Prefer the fast image model")
    p.add_argument("--reset", action="store_true", help="Restore default settings")

    p = sub.add_parser("edit", help="Start an editing session from an image file")
    p.add_argument("image", help="Path to a JPEG or PNG product photo")

    p = sub.add_parser("imagine", help="Generate a product photo from a description, then edit it")
    p.add_argument("prompt", help="Product description")

    sub.add_parser("products", help="List saved products")

    p = sub.add_parser("show", help="Show one product")
    p.add_argument("product_id")

    p = sub.add_parser("listing", help="Generate and save listing copy")
    p.add_argument("product_id")
    p.add_argument("--platform", choices=PLATFORMS, default=None,
                   help="Target marketplace (default: product's current platform)")

    p = sub.add_parser("seo", help="Score a saved listing and suggest keywords")
    p.add_argument("product_id")

    p = sub.add_parser("primary", help="Choose the primary image of a product")
    p.add_argument("product_id")
    p.add_argument("index", type=int)

    p = sub.add_parser("delete", help="Delete a product and its images")
    p.add_argument("product_id")
    p.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    return parser.parse_args(argv)


@dataclass
class App:
    config: AppConfig
    catalog: CatalogStore
    artifacts: ArtifactStore

    @classmethod
    def open(cls, config: AppConfig) -> "App":
        catalog = CatalogStore(config.data_dir)
        if config.env_api_key and not catalog.get_settings().gemini_api_key:
            catalog.update_settings(gemini_api_key=config.env_api_key)
            logger.info("API key seeded from GEMINI_API_KEY")
        return cls(config, catalog, open_artifact_store(config))

    def orchestrator(self) -> SessionOrchestrator:
        return SessionOrchestrator(self.catalog, self.artifacts, models=self.config.models)

    def workflow(self) -> ListingWorkflow:
        return ListingWorkflow(self.catalog, self.artifacts, models=self.config.models)


# ── Output helpers ────────────────────────────────────────────────────────────

def _mask(key: str) -> str:
    if not key:
        return "[red]not set[/red]"
    return f"{key[:4]}…{key[-4:]}" if len(key) > 8 else "****"


def print_settings(app: App) -> None:
    s = app.catalog.get_settings()
    table = Table(show_header=False, box=None)
    table.add_row("Gemini API key", _mask(s.gemini_api_key))
    table.add_row("Brand", s.brand_name or "[dim]-[/dim]")
    table.add_row("Brand colors", ", ".join(s.brand_colors) or "[dim]-[/dim]")
    table.add_row("Default tone", s.default_tone)
    table.add_row("Image model", app.config.models.quality if s.prefer_quality else app.config.models.fast)
    table.add_row("Storage", f"{app.config.storage_backend} @ {app.config.data_dir}")
    table.add_row(
        "Catalog",
        f"{app.catalog.total_products()} product(s), {app.catalog.total_images()} image(s)",
    )
    console.print(Panel(table, title="Settings", border_style="cyan"))


def print_message(message: ChatMessage) -> None:
    if message.role == "user":
        console.print(f"[bold]you:[/bold] {escape(message.text or '')}")
        return
    style = "red" if (message.text or "").startswith("Error:") else "green"
    console.print(f"[{style}]ai:[/{style}] {escape(message.text or '')}")
    if message.image_path:
        console.print(f"    [dim]→ {message.image_path}[/dim]")


def print_product(product: Product) -> None:
    lines = [
        f"[bold]{escape(product.title) or '(untitled)'}[/bold]",
        f"[dim]{product.id}[/dim]",
        "",
        f"Platform:  {product.platform_format}",
        f"Category:  {escape(product.category) or '-'}",
        f"Price:     ${product.suggested_price_low:g} - ${product.suggested_price_high:g}",
        f"Score:     {product.listing_score:g}/100",
        f"Tags:      {escape(', '.join(product.tags)) or '-'}",
        "",
        "Images:",
    ]
    for i, path in enumerate(product.image_paths):
        marker = "★" if i == product.primary_image_index else " "
        lines.append(f"  {marker} [{i}] {path}")
    if product.description:
        lines += ["", escape(product.description)]
    console.print(Panel("\n".join(lines), border_style="magenta"))


def print_draft(draft: ListingDraft) -> None:
    limits = draft.limits
    for i, title in enumerate(draft.titles):
        over = limits.title_length is not None and len(title) > limits.title_length
        note = f" [yellow]({len(title)}/{limits.title_length}, will be cut)[/yellow]" if over else ""
        console.print(f"  [{i}] {escape(title)}{note}")
    console.print()
    console.print(draft.to_text(), markup=False, highlight=False)
    if draft.target_audience:
        console.print(f"[dim]Target audience: {escape(draft.target_audience)}[/dim]")


# ── Commands ──────────────────────────────────────────────────────────────────

def cmd_settings(app: App, args: argparse.Namespace) -> None:
    if args.reset:
        app.catalog.reset_settings()
        console.print("  [green]✓ Settings reset to defaults[/green]")
    updates = {}
    if args.api_key is not None:
        updates["gemini_api_key"] = args.api_key.strip()
    if args.brand is not None:
        updates["brand_name"] = args.brand.strip()
    if args.colors is not None:
        updates["brand_colors"] = [c.strip() for c in args.colors.split(",") if c.strip()]
    if args.tone is not None:
        updates["default_tone"] = args.tone
    if args.prefer_quality is not None:
        updates["prefer_quality"] = args.prefer_quality
    if updates:
        app.catalog.update_settings(**updates)
        console.print(f"  [green]✓ Updated {', '.join(sorted(updates))}[/green]")
    print_settings(app)


async def edit_loop(app: App, session: SessionOrchestrator) -> None:
    console.print(Rule("[bold magenta]Editing session[/bold magenta]"))
    console.print(
        "[dim]Type an instruction to edit the photo. Commands: "
        "/bg  /vary  /pick N  /save  /reset  /quit[/dim]\n"
    )
    console.print(f"  [dim]current image → {session.session.current_image_path}[/dim]")

    while True:
        text = Prompt.ask("💬").strip()
        if not text:
            continue
        try:
            if text in ("/quit", "/q"):
                break
            elif text == "/bg":
                with console.status("Removing background…"):
                    reply = await session.remove_background()
                print_message(reply)
            elif text == "/vary":
                with console.status("Generating variations…"):
                    outcome = await session.generate_variations()
                for i, path in enumerate(outcome.paths):
                    console.print(f"  [{i}] {path}")
                if outcome.partial:
                    console.print(f"  [yellow]⚠ {outcome.notice}[/yellow]")
                    for error in outcome.errors:
                        console.print(f"    [dim]{escape(error)}[/dim]")
            elif text.startswith("/pick"):
                _, _, arg = text.partition(" ")
                if not arg.strip().isdigit():
                    console.print("  [yellow]⚠ Usage: /pick N[/yellow]")
                    continue
                path = session.select_variation(int(arg))
                console.print(f"  [green]✓ Current image → {path}[/green]")
            elif text == "/save":
                product = session.save_product()
                console.print(
                    f"  [green]✓ Saved {product.id} ({len(product.image_paths)} image(s))[/green]\n"
                    f"  [dim]Next: python -m lister.main listing {product.id}[/dim]"
                )
            elif text == "/reset":
                session.reset()
                console.print("  [dim]Session cleared. Start again with the edit command.[/dim]")
                break
            elif text.startswith("/"):
                console.print(f"  [yellow]⚠ Unknown command {escape(text)}[/yellow]")
            else:
                with console.status("Thinking…"):
                    reply = await session.send_message(text)
                print_message(reply)
        except ListerError as exc:
            _print_error(exc)


async def cmd_edit(app: App, args: argparse.Namespace) -> None:
    session = app.orchestrator()
    path = await session.pick_image(args.image)
    console.print(f"  [green]✓[/green] Loaded {escape(str(args.image))} → {path}")
    await edit_loop(app, session)


async def cmd_imagine(app: App, args: argparse.Namespace) -> None:
    session = app.orchestrator()
    with console.status("Generating image…"):
        result = await session.imagine(args.prompt)
    if not result.ok:
        console.print(f"  [red]✗ {escape(result.error or '')}[/red]")
        return
    if result.image is None:
        console.print(f"  [yellow]⚠ No image was returned.[/yellow] {escape(result.text or '')}")
        return
    if result.text:
        console.print(f"  [dim]{escape(result.text)}[/dim]")
    console.print(f"  [green]✓[/green] Generated → {session.session.current_image_path}")
    await edit_loop(app, session)


def cmd_products(app: App, args: argparse.Namespace) -> None:
    products = app.catalog.list_products()
    if not products:
        console.print("[dim]No products yet. Start with: python -m lister.main edit photo.jpg[/dim]")
        return
    table = Table(title=f"{len(products)} product(s)")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Title")
    table.add_column("Platform")
    table.add_column("Images", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Updated", style="dim")
    for p in products:
        table.add_row(
            p.id,
            escape(p.title) or "[dim](untitled)[/dim]",
            p.platform_format,
            str(len(p.image_paths)),
            f"{p.listing_score:g}" if p.listing_score else "-",
            p.updated_at[:16].replace("T", " "),
        )
    console.print(table)


def cmd_show(app: App, args: argparse.Namespace) -> None:
    print_product(app.catalog.require_product(args.product_id))


async def cmd_listing(app: App, args: argparse.Namespace) -> None:
    workflow = app.workflow()
    draft = workflow.open_draft(args.product_id)
    if args.platform:
        draft.set_platform(args.platform)

    with console.status("Writing listing…"):
        draft = await workflow.generate_listing(args.product_id, draft)
    console.print(Rule(f"[bold]Listing for {draft.platform}[/bold]"))
    print_draft(draft)

    if len(draft.titles) > 1:
        choice = Prompt.ask(
            "Title", choices=[str(i) for i in range(len(draft.titles))], default="0"
        )
        draft.select_title(int(choice))

    extra = Prompt.ask("Extra tags (comma-separated)", default="")
    for tag in extra.split(","):
        if tag.strip() and not draft.add_tag(tag):
            console.print(f"  [yellow]⚠ Skipped tag {escape(repr(tag.strip()))}[/yellow]")

    if Confirm.ask("Save this listing?", default=True):
        product = workflow.save_listing(draft)
        console.print(f"  [green]✓ Saved listing for {product.id}[/green]")
        console.print(f"  [dim]Next: python -m lister.main seo {product.id}[/dim]")


async def cmd_seo(app: App, args: argparse.Namespace) -> None:
    workflow = app.workflow()
    with console.status("Analyzing listing…"):
        result = await workflow.analyze_seo(args.product_id)

    b = result.score_breakdown
    console.print(
        Panel(
            f"[bold]{result.listing_score:g}/100[/bold]\n\n"
            f"Title {b.title_quality:g} · Description {b.description_completeness:g} · "
            f"Tags {b.tag_relevance:g} · Keywords {b.keyword_optimization:g}",
            title="SEO score",
            border_style="cyan",
        )
    )

    if result.improvements:
        console.print("[bold]Improvements[/bold]")
        for item in result.improvements:
            console.print(f"  • {escape(item)}")

    insights = result.competitor_insights
    if insights.common_keywords or insights.differentiators:
        console.print("\n[bold]Competitors[/bold]")
        price = insights.typical_price_range
        if price.low or price.high:
            console.print(f"  Typical price: ${price.low:g} - ${price.high:g}")
        if insights.common_keywords:
            console.print(f"  Common keywords: {escape(', '.join(insights.common_keywords))}")
        for item in insights.differentiators:
            console.print(f"  • {escape(item)}")

    if not result.suggested_keywords:
        return
    table = Table(title="Suggested keywords")
    table.add_column("#", justify="right")
    table.add_column("Keyword")
    table.add_column("Relevance")
    table.add_column("Why", style="dim")
    for i, kw in enumerate(result.suggested_keywords):
        table.add_row(str(i), escape(kw.keyword), kw.relevance, escape(kw.reason))
    console.print(table)

    picks = Prompt.ask("Add keywords to tags (numbers, comma-separated)", default="")
    for token in picks.split(","):
        token = token.strip()
        if not token.isdigit() or int(token) >= len(result.suggested_keywords):
            if token:
                console.print(f"  [yellow]⚠ Skipped {escape(repr(token))}[/yellow]")
            continue
        keyword = result.suggested_keywords[int(token)].keyword
        workflow.add_keyword(args.product_id, keyword)
        console.print(f"  [green]✓ Added {escape(keyword.lower())}[/green]")


def cmd_primary(app: App, args: argparse.Namespace) -> None:
    product = app.workflow().set_primary_image(args.product_id, args.index)
    console.print(f"  [green]✓ Primary image → {product.primary_image}[/green]")


async def cmd_delete(app: App, args: argparse.Namespace) -> None:
    product = app.catalog.require_product(args.product_id)
    if not args.yes and not Confirm.ask(
        f"Delete {product.title or product.id} and {len(product.image_paths)} image(s)?",
        default=False,
    ):
        return
    await app.workflow().delete_product(args.product_id)
    console.print(f"  [green]✓ Deleted {args.product_id}[/green]")


COMMANDS = {
    "settings": cmd_settings,
    "edit": cmd_edit,
    "imagine": cmd_imagine,
    "products": cmd_products,
    "show": cmd_show,
    "listing": cmd_listing,
    "seo": cmd_seo,
    "primary": cmd_primary,
    "delete": cmd_delete,
}


def _print_error(exc: ListerError) -> None:
    console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
    if isinstance(exc, PreconditionFailed) and exc.action:
        console.print(f"  [dim]→ {escape(exc.action)}[/dim]")


# ── Entry point ───────────────────────────────────────────────────────────────

def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )

    try:
        app = App.open(AppConfig.from_env())
        handler = COMMANDS[args.command]
        if inspect.iscoroutinefunction(handler):
            asyncio.run(handler(app, args))
        else:
            handler(app, args)
    except ListerError as exc:
        _print_error(exc)
        return 1
    except ValueError as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        return 2
    except KeyboardInterrupt:
        console.print("\n[dim]Interrupted.[/dim]")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
