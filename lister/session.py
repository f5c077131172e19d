"""
session.py: Editing session state and the orchestrator that drives it.

  EMPTY  ──pick_image──▶  READY  ──send_message──▶  EDITING
    ▲                        │                         │
    └────────reset───────────┴──────pick_image─────────┘ (back to READY)

The orchestrator owns the Session exclusively. Every action is fail-soft:
provider errors become a model message in the transcript (chat actions) or a
counted partial result (variations). Only a failed artifact write propagates.

One action at a time: a second call while is_processing is set raises
SessionBusy instead of queueing.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Callable, List, Optional

from .artifacts import ArtifactStore, ImageSource
from .catalog import CatalogStore
from .config import ModelConfig
from .errors import PreconditionFailed, SessionBusy
from .gemini import FALLBACK_NOTICE, VARIATION_PROMPTS, EditResult, GenerativeClient
from .models import ChatMessage, Product, Settings, utc_now

logger = logging.getLogger(__name__)

ClientFactory = Callable[[Settings], GenerativeClient]

ORIGINAL_FILENAME = "original.jpg"


def new_product_id() -> str:
    return str(uuid.uuid4())


class SessionState(str, Enum):
    EMPTY = "empty"
    READY = "ready"
    EDITING = "editing"


@dataclass
class Session:
    product_id: str = field(default_factory=new_product_id)
    current_image_path: Optional[str] = None
    chat_history: List[ChatMessage] = field(default_factory=list)
    is_processing: bool = False
    variations: List[str] = field(default_factory=list)
    selected_variation_index: Optional[int] = None

    @property
    def state(self) -> SessionState:
        if self.current_image_path is None:
            return SessionState.EMPTY
        if self.chat_history:
            return SessionState.EDITING
        return SessionState.READY


@dataclass
class VariationOutcome:
    paths: List[str]
    errors: List[str]
    requested: int

    @property
    def partial(self) -> bool:
        return len(self.paths) < self.requested

    @property
    def notice(self) -> str:
        return f"Generated {len(self.paths)} of {self.requested} variations"


class SessionOrchestrator:
    def __init__(
        self,
        catalog: CatalogStore,
        artifacts: ArtifactStore,
        client_factory: Optional[ClientFactory] = None,
        models: Optional[ModelConfig] = None,
        product_id: Optional[str] = None,
    ) -> None:
        self.catalog = catalog
        self.artifacts = artifacts
        self.models = models
        self._client_factory = client_factory or (
            lambda settings: GenerativeClient.from_settings(settings, self.models)
        )
        self._client: Optional[GenerativeClient] = None
        self._last_stamp = 0
        self.session = Session(product_id=product_id or new_product_id())

    # ── Plumbing ──────────────────────────────────────────────────────────────

    @asynccontextmanager
    async def _processing(self) -> AsyncIterator[None]:
        if self.session.is_processing:
            raise SessionBusy()
        self.session.is_processing = True
        try:
            yield
        finally:
            self.session.is_processing = False

    def _require_ready(self) -> Settings:
        settings = self.catalog.get_settings()
        if not settings.gemini_api_key:
            raise PreconditionFailed(
                "API Key Required: add your Gemini API key in Settings to use AI features.",
                action="settings --api-key <KEY>",
            )
        if self.session.current_image_path is None:
            raise PreconditionFailed(
                "No image: pick or take a product photo first.",
                action="pick an image",
            )
        return settings

    def _client_for(self, settings: Settings) -> GenerativeClient:
        """Reuse the client (and its chat) unless the API key changed."""
        if self._client is None or self._client.api_key != settings.gemini_api_key:
            self._client = self._client_factory(settings)
        self._client.prefer_quality = settings.prefer_quality
        return self._client

    def _stamp(self) -> int:
        """Millisecond timestamp, strictly increasing within this session."""
        stamp = max(int(time.time() * 1000), self._last_stamp + 1)
        self._last_stamp = stamp
        return stamp

    def _add_message(self, role: str, text: Optional[str] = None, image_path: Optional[str] = None) -> ChatMessage:
        message = ChatMessage(role=role, text=text, image_path=image_path)
        self.session.chat_history.append(message)
        return message

    async def _apply_edit(self, result: EditResult, prefix: str, success_text: str, empty_text: str) -> ChatMessage:
        """Persist an edit result and record it as a model message."""
        if not result.ok:
            return self._add_message("model", f"Error: {result.error}")
        if result.image is None:
            return self._add_message("model", result.text or empty_text)

        path = await self.artifacts.put(
            self.session.product_id, f"{prefix}_{self._stamp()}.jpg", result.image
        )
        self.session.current_image_path = path
        return self._add_message("model", result.text or success_text, image_path=path)

    # ── Actions ───────────────────────────────────────────────────────────────

    async def pick_image(self, source: ImageSource) -> str:
        """
        Make source the new base image. Clears transcript, variations and the
        provider chat regardless of the previous state.
        """
        async with self._processing():
            path = await self.artifacts.put_from_source(
                self.session.product_id, source, ORIGINAL_FILENAME
            )
            self.session.current_image_path = path
            self.session.chat_history = []
            self.session.variations = []
            self.session.selected_variation_index = None
            if self._client is not None:
                self._client.reset_conversation()
        logger.info("session %s: base image %s", self.session.product_id, path)
        return path

    async def imagine(self, prompt: str) -> EditResult:
        """
        Generate a base image from a description instead of picking one.
        On success the picture becomes original.jpg exactly as pick_image would.
        """
        settings = self.catalog.get_settings()
        if not settings.gemini_api_key:
            raise PreconditionFailed(
                "API Key Required: add your Gemini API key in Settings to use AI features.",
                action="settings --api-key <KEY>",
            )
        async with self._processing():
            result = await self._client_for(settings).generate_from_text(prompt)
        if result.ok and result.image is not None:
            await self.pick_image(result.image)
        return result

    async def send_message(self, text: str) -> ChatMessage:
        """
        One chat turn. The user message is appended before the call; the model
        reply (or the error) is appended after it.
        """
        settings = self._require_ready()
        async with self._processing():
            self._add_message("user", text)
            client = self._client_for(settings)
            try:
                if client.has_conversation:
                    result = await client.continue_conversation(text)
                else:
                    image = await self.artifacts.get(self.session.current_image_path)
                    result = await client.start_conversation(image, text)
            except Exception as exc:
                logger.warning("session %s: chat turn failed: %s", self.session.product_id, exc)
                return self._add_message("model", f"Error: {exc}")
            return await self._apply_edit(result, "edit", "Image updated!", "Done!")

    async def remove_background(self) -> ChatMessage:
        """Single-turn edit outside the chat, recorded in the transcript."""
        settings = self._require_ready()
        async with self._processing():
            self._add_message("user", "Remove background")
            client = self._client_for(settings)
            try:
                image = await self.artifacts.get(self.session.current_image_path)
                result = await client.remove_background(image)
            except Exception as exc:
                logger.warning("session %s: background removal failed: %s", self.session.product_id, exc)
                return self._add_message("model", f"Error: {exc}")
            if result.ok and result.image is not None:
                result.text = "Background removed!"
                if result.used_fallback:
                    result.text += f"\n{FALLBACK_NOTICE}"
            return await self._apply_edit(result, "nobg", "Background removed!", "No image was returned.")

    async def generate_variations(self) -> VariationOutcome:
        """
        Four restyled renditions of the current image, generated concurrently.
        Successful slots replace session.variations in order; failed slots are
        dropped, not padded.
        """
        settings = self._require_ready()
        async with self._processing():
            client = self._client_for(settings)
            image = await self.artifacts.get(self.session.current_image_path)
            results = await client.generate_variations(image, VARIATION_PROMPTS)

            paths: List[str] = []
            errors: List[str] = []
            for index, result in enumerate(results):
                if result.ok and result.image is not None:
                    paths.append(
                        await self.artifacts.put(
                            self.session.product_id, f"variation_{index}.jpg", result.image
                        )
                    )
                else:
                    errors.append(result.error or "No image was returned.")

            self.session.variations = paths
            self.session.selected_variation_index = None

        outcome = VariationOutcome(paths=paths, errors=errors, requested=len(results))
        if outcome.partial:
            logger.info("session %s: %s", self.session.product_id, outcome.notice)
        return outcome

    def select_variation(self, index: int) -> str:
        """Promote a generated variation to the current image. No network call."""
        if self.session.is_processing:
            raise SessionBusy()
        if not 0 <= index < len(self.session.variations):
            raise PreconditionFailed(f"No variation at index {index}.")
        self.session.selected_variation_index = index
        self.session.current_image_path = self.session.variations[index]
        return self.session.current_image_path

    def save_product(self) -> Product:
        """
        Commit the session to the catalog: current image first, then the
        variations, de-duplicated. Listing fields stay empty until the listing
        workflow fills them.
        """
        if self.session.current_image_path is None:
            raise PreconditionFailed("No image: pick or take a product photo first.")
        if self.session.is_processing:
            raise SessionBusy()

        image_paths = list(dict.fromkeys([self.session.current_image_path, *self.session.variations]))
        chat = [m.model_copy() for m in self.session.chat_history]
        product_id = self.session.product_id

        if self.catalog.get_product(product_id) is not None:
            return self.catalog.update_product(
                product_id,
                image_paths=image_paths,
                primary_image_index=0,
                ai_chat_history=chat,
            )

        now = utc_now()
        return self.catalog.add_product(
            Product(
                id=product_id,
                image_paths=image_paths,
                primary_image_index=0,
                ai_chat_history=chat,
                created_at=now,
                updated_at=now,
            )
        )

    def reset(self) -> None:
        """Back to EMPTY with a fresh product id; the provider chat is dropped."""
        if self.session.is_processing:
            raise SessionBusy()
        if self._client is not None:
            self._client.reset_conversation()
        self.session = Session()
