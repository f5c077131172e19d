"""
listing.py: Listing generation and SEO analysis for saved products.

Generation produces a ListingDraft that the caller edits and then saves
explicitly; saving applies the platform's title/tag limits. SEO analysis
writes only listing_score back; keywords are added one at a time on request.

Tags are normalised the same way everywhere (trimmed, lower-cased,
de-duplicated in order), whether they come from the model, the user or an
SEO suggestion.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Union

from .artifacts import ArtifactStore
from .catalog import CatalogStore
from .config import ModelConfig
from .errors import PreconditionFailed
from .gemini import GenerativeClient
from .models import (
    PLATFORMS,
    ListingDescription,
    ListingResult,
    PlatformLimits,
    Product,
    SEOResult,
    Settings,
    platform_limits,
)

logger = logging.getLogger(__name__)

ClientFactory = Callable[[Settings], GenerativeClient]


def normalize_tag(tag: str) -> str:
    return " ".join(tag.split()).lower()


def normalize_tags(tags: Iterable[str]) -> List[str]:
    cleaned = (normalize_tag(t) for t in tags)
    return list(dict.fromkeys(t for t in cleaned if t))


def format_listing_text(
    title: str,
    description: Union[ListingDescription, str, None],
    tags: List[str],
    category: str = "",
    price_low: float = 0,
    price_high: float = 0,
) -> str:
    """Whole listing as one paste-ready block."""
    parts = ["TITLE:", title, ""]
    if isinstance(description, ListingDescription):
        parts += ["DESCRIPTION:", description.overview, ""]
        parts += ["Features:", *(f"• {f}" for f in description.features), ""]
        parts += ["Materials:", description.materials, ""]
        parts += ["Care Instructions:", description.care, ""]
    elif description:
        parts += ["DESCRIPTION:", description, ""]
    parts += ["TAGS:", ", ".join(tags), ""]
    if category:
        parts += ["CATEGORY:", category, ""]
    if price_low > 0 or price_high > 0:
        parts += ["SUGGESTED PRICE:", f"${price_low:g} - ${price_high:g}"]
    return "\n".join(parts)


# ── Draft ─────────────────────────────────────────────────────────────────────

@dataclass
class ListingDraft:
    """Unsaved listing candidates for one product."""
    product_id: str
    platform: str = "etsy"
    titles: List[str] = field(default_factory=list)
    selected_title_index: int = 0
    description: Optional[ListingDescription] = None
    description_text: str = ""          # existing description when nothing was generated
    tags: List[str] = field(default_factory=list)
    category: str = ""
    price_low: float = 0
    price_high: float = 0
    target_audience: str = ""

    @classmethod
    def from_product(cls, product: Product) -> "ListingDraft":
        return cls(
            product_id=product.id,
            platform=product.platform_format,
            titles=[product.title] if product.title else [],
            description_text=product.description,
            tags=list(product.tags),
            category=product.category,
            price_low=product.suggested_price_low,
            price_high=product.suggested_price_high,
        )

    @property
    def limits(self) -> PlatformLimits:
        return platform_limits(self.platform)

    @property
    def title(self) -> str:
        if not 0 <= self.selected_title_index < len(self.titles):
            return ""
        return self.titles[self.selected_title_index]

    @property
    def rendered_description(self) -> str:
        if self.description is not None:
            return self.description.render()
        return self.description_text

    def apply(self, result: ListingResult) -> None:
        self.titles = list(result.titles)
        self.selected_title_index = 0
        self.description = result.description
        self.tags = normalize_tags(result.tags)
        self.category = result.category
        self.price_low = result.price_range.low
        self.price_high = result.price_range.high
        self.target_audience = result.target_audience

    def select_title(self, index: int) -> None:
        if not 0 <= index < len(self.titles):
            raise PreconditionFailed(f"No title at index {index}.")
        self.selected_title_index = index

    def set_platform(self, platform: str) -> None:
        if platform not in PLATFORMS:
            raise ValueError(f"Unknown platform {platform!r}; expected one of {', '.join(PLATFORMS)}")
        self.platform = platform

    def add_tag(self, tag: str) -> bool:
        """Add one tag unless empty, duplicate or over the platform limit."""
        tag = normalize_tag(tag)
        max_tags = self.limits.max_tags
        if not tag or tag in self.tags:
            return False
        if max_tags is not None and len(self.tags) >= max_tags:
            return False
        self.tags.append(tag)
        return True

    def remove_tag(self, index: int) -> None:
        del self.tags[index]

    def to_text(self) -> str:
        return format_listing_text(
            self.limits.truncate_title(self.title),
            self.description if self.description is not None else self.description_text,
            self.limits.truncate_tags(self.tags),
            self.category,
            self.price_low,
            self.price_high,
        )


# ── Workflow ──────────────────────────────────────────────────────────────────

class ListingWorkflow:
    def __init__(
        self,
        catalog: CatalogStore,
        artifacts: ArtifactStore,
        client_factory: Optional[ClientFactory] = None,
        models: Optional[ModelConfig] = None,
    ) -> None:
        self.catalog = catalog
        self.artifacts = artifacts
        self.models = models
        self._client_factory = client_factory or (
            lambda settings: GenerativeClient.from_settings(settings, self.models)
        )

    def _require_api_key(self) -> Settings:
        settings = self.catalog.get_settings()
        if not settings.gemini_api_key:
            raise PreconditionFailed(
                "API Key Required: add your Gemini API key in Settings.",
                action="settings --api-key <KEY>",
            )
        return settings

    def _require_image(self, product: Product) -> str:
        if product.primary_image is None:
            raise PreconditionFailed("No Image: add an image to the product first.")
        return product.primary_image

    def open_draft(self, product_id: str) -> ListingDraft:
        return ListingDraft.from_product(self.catalog.require_product(product_id))

    async def generate_listing(self, product_id: str, draft: Optional[ListingDraft] = None) -> ListingDraft:
        """
        Ask the text model for listing copy. Nothing is written to the catalog;
        the returned draft must be passed to save_listing().

        Raises:
            PreconditionFailed: no API key, or the product has no image.
            ProviderError / MalformedResponse: generation failed.
        """
        settings = self._require_api_key()
        product = self.catalog.require_product(product_id)
        image_path = self._require_image(product)

        image = await self.artifacts.get(image_path)
        client = self._client_factory(settings)
        result = await client.generate_listing(
            image,
            brand_name=settings.brand_name or None,
            tone=settings.default_tone,
        )

        draft = draft or ListingDraft.from_product(product)
        draft.apply(result)
        logger.info("listing generated for %s (%d titles, %d tags)", product_id, len(draft.titles), len(draft.tags))
        return draft

    def save_listing(self, draft: ListingDraft) -> Product:
        """Commit a draft, cut to the selected platform's title and tag limits."""
        limits = draft.limits
        return self.catalog.update_product(
            draft.product_id,
            title=limits.truncate_title(draft.title),
            description=draft.rendered_description,
            tags=limits.truncate_tags(normalize_tags(draft.tags)),
            category=draft.category,
            suggested_price_low=draft.price_low,
            suggested_price_high=draft.price_high,
            platform_format=draft.platform,
        )

    async def analyze_seo(self, product_id: str) -> SEOResult:
        """
        Score the saved listing. listing_score is written back immediately;
        the rest of the analysis is returned for display only.

        Raises:
            PreconditionFailed: no API key, no image, or no listing title yet.
            ProviderError / MalformedResponse: analysis failed.
        """
        settings = self._require_api_key()
        product = self.catalog.require_product(product_id)
        image_path = self._require_image(product)
        if not product.title:
            raise PreconditionFailed(
                "No Listing: generate a listing first before analyzing SEO.",
                action=f"listing {product_id}",
            )

        image = await self.artifacts.get(image_path)
        client = self._client_factory(settings)
        result = await client.analyze_seo(image, product.title, product.description, product.tags)

        self.catalog.update_product(product_id, listing_score=result.listing_score)
        logger.info("SEO score for %s: %s", product_id, result.listing_score)
        return result

    def add_keyword(self, product_id: str, keyword: str) -> Product:
        """Append a suggested keyword to the product's tags. No platform cap here."""
        product = self.catalog.require_product(product_id)
        tag = normalize_tag(keyword)
        if not tag:
            raise PreconditionFailed("Keyword is empty.")
        if tag in product.tags:
            return product
        return self.catalog.update_product(product_id, tags=[*product.tags, tag])

    def set_primary_image(self, product_id: str, index: int) -> Product:
        product = self.catalog.require_product(product_id)
        if not 0 <= index < len(product.image_paths):
            raise PreconditionFailed(
                f"Image index {index} out of range; product has {len(product.image_paths)} image(s)."
            )
        return self.catalog.update_product(product_id, primary_image_index=index)

    async def delete_product(self, product_id: str) -> bool:
        """Remove the catalog record and every stored image of the product."""
        deleted = self.catalog.delete_product(product_id)
        await self.artifacts.delete_all(product_id)
        return deleted
