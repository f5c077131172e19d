"""Tests for CLI output helpers and exit codes."""

import io

import pytest
from rich.console import Console

from lister import main as cli
from lister.errors import PreconditionFailed
from lister.models import ChatMessage, Product


@pytest.fixture
def output(monkeypatch):
    buffer = io.StringIO()
    monkeypatch.setattr(cli, "console", Console(file=buffer, width=200))
    return buffer


class TestPrintMessage:
    """Tests for transcript lines built from model and user text."""

    def test_model_text_with_closing_tag(self, output):
        """Test a reply that looks like a closing markup tag prints literally."""
        cli.print_message(ChatMessage(role="model", text="Moved it to [/left] side"))
        assert "ai: Moved it to [/left] side" in output.getvalue()

    def test_user_text_with_style_tag(self, output):
        """Test user input is not interpreted as markup."""
        cli.print_message(ChatMessage(role="user", text="make it [bold]red[/bold]"))
        assert "you: make it [bold]red[/bold]" in output.getvalue()

    def test_error_reply_with_brackets(self, output):
        cli.print_message(ChatMessage(role="model", text="Error: bad [request]"))
        assert "Error: bad [request]" in output.getvalue()

    def test_empty_text(self, output):
        cli.print_message(ChatMessage(role="model"))
        assert "ai:" in output.getvalue()


class TestPrintProduct:
    """Tests for the product panel."""

    def test_listing_fields_printed_literally(self, output):
        """Test generated copy with brackets survives into the panel."""
        product = Product(
            id="p1",
            title="Mug [limited]",
            category="Home [/kitchen]",
            tags=["[gift]"],
            description="Holds [/b] 12 oz",
        )
        cli.print_product(product)
        text = output.getvalue()
        assert "Mug [limited]" in text
        assert "Home [/kitchen]" in text
        assert "[gift]" in text
        assert "Holds [/b] 12 oz" in text


class TestErrors:
    """Tests for error reporting and exit codes."""

    def test_print_error_escapes_message_and_action(self, output):
        cli._print_error(PreconditionFailed("No file at [/tmp]", action="edit [path]"))
        text = output.getvalue()
        assert "Error: No file at [/tmp]" in text
        assert "edit [path]" in text

    def test_edit_missing_image_exits_cleanly(self, output, monkeypatch, tmp_path):
        """Test a missing photo is reported with a hint instead of a traceback."""
        monkeypatch.setattr(cli, "load_dotenv", lambda: None)
        monkeypatch.setenv("LISTER_DATA_DIR", str(tmp_path / "data"))
        monkeypatch.delenv("LISTER_STORAGE_BACKEND", raising=False)
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)

        code = cli.main(["edit", str(tmp_path / "missing.jpg")])

        assert code == 1
        text = output.getvalue()
        assert "Could not read image" in text
        assert "pick a JPEG or PNG photo" in text

    def test_bad_storage_backend(self, output, monkeypatch, tmp_path):
        monkeypatch.setattr(cli, "load_dotenv", lambda: None)
        monkeypatch.setenv("LISTER_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("LISTER_STORAGE_BACKEND", "s3")
        assert cli.main(["products"]) == 2
        assert "LISTER_STORAGE_BACKEND" in output.getvalue()
