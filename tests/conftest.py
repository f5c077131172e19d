"""Shared fixtures: temp stores, Pillow-made images, fake Gemini responses."""

import base64
import io
from types import SimpleNamespace
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.genai import types
from PIL import Image

from lister.artifacts import FileArtifactStore, SqliteArtifactStore
from lister.catalog import CatalogStore
from lister.gemini import EditResult

# Tiny payload used wherever only the bytes matter, never decoded as an image.
EDITED_B64 = "AAAA"
EDITED_BYTES = base64.b64decode(EDITED_B64)


def make_image(fmt: str = "JPEG", size=(8, 8), color=(200, 30, 30)) -> bytes:
    mode = "RGBA" if fmt == "PNG" else "RGB"
    fill = (*color, 128) if mode == "RGBA" else color
    out = io.BytesIO()
    Image.new(mode, size, fill).save(out, format=fmt)
    return out.getvalue()


def image_response(text: Optional[str] = None, image: Optional[bytes] = None, mime_type: str = "image/png"):
    """A real GenerateContentResponse with one candidate."""
    parts: List[types.Part] = []
    if text is not None:
        parts.append(types.Part.from_text(text=text))
    if image is not None:
        parts.append(types.Part.from_bytes(data=image, mime_type=mime_type))
    return types.GenerateContentResponse(
        candidates=[types.Candidate(content=types.Content(role="model", parts=parts))]
    )


def text_response(text: str):
    return SimpleNamespace(text=text)


def fake_genai(generate=None, chat=None):
    """Stand-in for genai.Client exposing only the async surface the adapter uses."""
    chat = chat or SimpleNamespace(send_message=AsyncMock())
    return SimpleNamespace(
        aio=SimpleNamespace(
            models=SimpleNamespace(generate_content=generate or AsyncMock()),
            chats=SimpleNamespace(create=MagicMock(return_value=chat)),
        )
    )


class FakeAdapter:
    """
    Scripted GenerativeClient replacement for session and listing tests.

    Mirrors the real adapter's conversation bookkeeping so "first message"
    logic can be observed.
    """

    def __init__(self, api_key: str = "test-key") -> None:
        self.api_key = api_key
        self.prefer_quality = False
        self._chat = False
        self.start_conversation = AsyncMock(side_effect=self._start)
        self.continue_conversation = AsyncMock(
            return_value=EditResult(text="done", image=EDITED_BYTES)
        )
        self.remove_background = AsyncMock(return_value=EditResult(text="ok", image=EDITED_BYTES))
        self.generate_variations = AsyncMock(
            return_value=[EditResult(image=EDITED_BYTES) for _ in range(4)]
        )
        self.generate_from_text = AsyncMock(return_value=EditResult(image=make_image("PNG")))
        self.generate_listing = AsyncMock()
        self.analyze_seo = AsyncMock()
        self.start_result = EditResult(text="done", image=EDITED_BYTES)

    async def _start(self, image: bytes, prompt: str) -> EditResult:
        if self.start_result.ok:
            self._chat = True
        return self.start_result

    @property
    def has_conversation(self) -> bool:
        return self._chat

    def reset_conversation(self) -> None:
        self._chat = False


@pytest.fixture
def catalog(tmp_path):
    return CatalogStore(tmp_path / "data")


@pytest.fixture
def keyed_catalog(catalog):
    catalog.update_settings(gemini_api_key="test-key")
    return catalog


@pytest.fixture
def file_store(tmp_path):
    return FileArtifactStore(tmp_path / "images")


@pytest.fixture(params=["file", "sqlite"])
def artifact_store(request, tmp_path):
    if request.param == "sqlite":
        return SqliteArtifactStore(tmp_path / "images.db")
    return FileArtifactStore(tmp_path / "images")


@pytest.fixture
def jpeg_bytes():
    return make_image("JPEG")


@pytest.fixture
def png_bytes():
    return make_image("PNG")


@pytest.fixture
def photo(tmp_path, jpeg_bytes):
    path = tmp_path / "photo.jpg"
    path.write_bytes(jpeg_bytes)
    return path


@pytest.fixture
def adapter():
    return FakeAdapter()
