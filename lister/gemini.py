"""
gemini.py: Generative client adapter over the google-genai async API.

Image operations (multi-turn edit, single-turn edit, variations, background
removal, text-to-image) go to an image model chosen by the quality/fast tier.
Listing and SEO analysis always go to the text model and must come back as a
JSON object.

Tier fallback, for start_conversation / edit_once / generate_variations /
remove_background / generate_from_text only:

  1. call the preferred tier
  2. on a retryable failure (429 / 503 / "overloaded") on the quality tier,
     retry exactly once on the fast tier and disclose it in the reply text
  3. anything else surfaces immediately

Image operations never raise provider errors: the failure comes back on the
EditResult so the session can show it in the transcript.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from google import genai
from google.genai import types
from pydantic import ValidationError

from .config import ModelConfig
from .errors import (
    ErrorKind,
    MalformedResponse,
    NoActiveSession,
    PreconditionFailed,
    ProviderError,
    classify_error,
    error_message,
)
from .imaging import sniff_mime
from .json_extract import extract_json_object
from .models import ListingResult, SEOResult, Settings

logger = logging.getLogger(__name__)


# ── Prompts ───────────────────────────────────────────────────────────────────

VARIATION_PROMPTS = (
    "Show this product with warm studio lighting on a pure white background. "
    "Keep the product exactly as it is.",
    "Show this product with cool minimal lighting and a slight shadow on a light gray background. "
    "Keep the product exactly as it is.",
    "Show this product in a lifestyle setting, as if it were being worn or used naturally. "
    "Keep the product exactly as it is.",
    "Show this product in a flat-lay arrangement on a dark wood surface with subtle props. "
    "Keep the product exactly as it is.",
)

REMOVE_BACKGROUND_PROMPT = (
    "Remove the background completely and replace it with a pure white background. "
    "Keep the product/subject exactly as it is with clean edges."
)

TEXT_TO_IMAGE_TEMPLATE = (
    "Generate a professional product photo: {prompt}. "
    "Make it look like a high-quality e-commerce product image with clean lighting and background."
)

FALLBACK_NOTICE = "(Used fallback model due to high demand)"

LISTING_SCHEMA = """\
Return JSON only, no markdown, no code blocks:
{
  "titles": ["5 SEO-optimized title variations, max 140 chars each"],
  "description": {
    "overview": "2-3 sentence product summary",
    "features": ["5 key features/benefits"],
    "materials": "materials and construction details",
    "care": "care instructions"
  },
  "tags": ["13 most searchable e-commerce tags for this product"],
  "category": "suggested product category",
  "priceRange": { "low": 0, "high": 0 },
  "targetAudience": "who would buy this"
}"""

SEO_SCHEMA = """\
Return JSON only, no markdown, no code blocks:
{
  "listingScore": 0,
  "scoreBreakdown": {
    "titleQuality": 0,
    "descriptionCompleteness": 0,
    "tagRelevance": 0,
    "keywordOptimization": 0
  },
  "suggestedKeywords": [
    { "keyword": "example keyword", "relevance": "high", "reason": "why this keyword would help" }
  ],
  "improvements": ["specific suggestion 1", "specific suggestion 2"],
  "competitorInsights": {
    "typicalPriceRange": { "low": 0, "high": 0 },
    "commonKeywords": ["keyword1", "keyword2"],
    "differentiators": ["what would make this listing stand out"]
  }
}

Score each category 0-100. listingScore should be the weighted average.
Provide 8-12 keyword suggestions with relevance levels.
Provide 3-5 specific improvements.
Base competitor insights on typical e-commerce listings for similar products."""


# ── Results ───────────────────────────────────────────────────────────────────

class Tier(str, Enum):
    QUALITY = "quality"
    FAST = "fast"


@dataclass
class EditResult:
    """Outcome of one image call. Exactly one of (text/image) or error is meaningful."""
    text: Optional[str] = None
    image: Optional[bytes] = None
    mime_type: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    used_fallback: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def image_base64(self) -> Optional[str]:
        if self.image is None:
            return None
        return base64.b64encode(self.image).decode("ascii")

    @classmethod
    def failure(cls, exc: BaseException, default: str = "Failed to process image") -> "EditResult":
        return cls(error=error_message(exc, default), error_kind=classify_error(exc))


def parse_image_response(response: Any) -> EditResult:
    """Collect text and the inline image from the first candidate."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return EditResult(error="No response from AI", error_kind=ErrorKind.FATAL)

    content = candidates[0].content
    texts: List[str] = []
    image: Optional[bytes] = None
    mime_type: Optional[str] = None
    for part in (content.parts if content else None) or []:
        if getattr(part, "thought", False):
            continue
        if part.text:
            texts.append(part.text)
        if part.inline_data and part.inline_data.data:
            data = part.inline_data.data
            if isinstance(data, str):
                data = base64.b64decode(data)
            image = data
            mime_type = part.inline_data.mime_type

    return EditResult(text="\n".join(texts) or None, image=image, mime_type=mime_type)


def _image_config() -> types.GenerateContentConfig:
    return types.GenerateContentConfig(response_modalities=["IMAGE", "TEXT"])


def _image_parts(image: bytes, prompt: str) -> List[types.Part]:
    return [
        types.Part.from_bytes(data=image, mime_type=sniff_mime(image)),
        types.Part.from_text(text=prompt),
    ]


# ── Client ────────────────────────────────────────────────────────────────────

class GenerativeClient:
    """
    One user's connection to Gemini.

    Holds the provider-side chat for multi-turn editing. The chat belongs to
    exactly one product/image and must be dropped with reset_conversation()
    before the client is used for another one.
    """

    def __init__(
        self,
        api_key: str,
        prefer_quality: bool = False,
        models: Optional[ModelConfig] = None,
        client: Optional[Any] = None,
    ) -> None:
        if client is None:
            if not api_key:
                raise PreconditionFailed(
                    "Gemini API key is not set.",
                    action="Add your Gemini API key in settings.",
                )
            client = genai.Client(api_key=api_key)
        self.api_key = api_key
        self.prefer_quality = prefer_quality
        self.models = models or ModelConfig()
        self._client = client
        self._chat: Optional[Any] = None

    @classmethod
    def from_settings(cls, settings: Settings, models: Optional[ModelConfig] = None) -> "GenerativeClient":
        return cls(settings.gemini_api_key, settings.prefer_quality, models)

    # ── Tiers ─────────────────────────────────────────────────────────────────

    @property
    def default_tier(self) -> Tier:
        return Tier.QUALITY if self.prefer_quality else Tier.FAST

    def model_for(self, tier: Tier) -> str:
        return self.models.quality if tier is Tier.QUALITY else self.models.fast

    async def _with_fallback(
        self,
        send: Callable[[str], Awaitable[Any]],
        label: str,
    ) -> EditResult:
        tier = self.default_tier
        model = self.model_for(tier)
        try:
            return parse_image_response(await send(model))
        except Exception as exc:
            kind = classify_error(exc)
            if kind is not ErrorKind.RETRYABLE or tier is not Tier.QUALITY:
                logger.warning("%s failed on %s: %s", label, model, exc)
                return EditResult.failure(exc)
            fast_model = self.model_for(Tier.FAST)
            logger.warning(
                "%s: %s unavailable (%s), retrying once on %s", label, model, exc, fast_model
            )

        try:
            result = parse_image_response(await send(fast_model))
        except Exception as fallback_exc:
            logger.warning("%s fallback on %s failed: %s", label, fast_model, fallback_exc)
            result = EditResult.failure(fallback_exc)
            result.used_fallback = True
            return result

        result.used_fallback = True
        if result.ok:
            result.text = f"{result.text}\n{FALLBACK_NOTICE}" if result.text else FALLBACK_NOTICE
        return result

    # ── Multi-turn editing ────────────────────────────────────────────────────

    @property
    def has_conversation(self) -> bool:
        return self._chat is not None

    def reset_conversation(self) -> None:
        self._chat = None

    async def start_conversation(self, image: bytes, prompt: str) -> EditResult:
        """Open a new chat seeded with the image and the first instruction."""
        self._chat = None
        created: List[Any] = []

        async def send(model: str) -> Any:
            chat = self._client.aio.chats.create(model=model, config=_image_config())
            created.append(chat)
            return await chat.send_message(_image_parts(image, prompt))

        result = await self._with_fallback(send, "start_conversation")
        if result.ok and created:
            self._chat = created[-1]
        return result

    async def continue_conversation(self, prompt: str) -> EditResult:
        """Follow-up instruction in the open chat. No tier fallback."""
        if self._chat is None:
            return EditResult.failure(NoActiveSession())
        try:
            response = await self._chat.send_message(prompt)
        except Exception as exc:
            logger.warning("continue_conversation failed: %s", exc)
            return EditResult.failure(exc, "Failed to process request")
        return parse_image_response(response)

    # ── Single-turn image operations ──────────────────────────────────────────

    async def edit_once(self, image: bytes, prompt: str) -> EditResult:
        async def send(model: str) -> Any:
            return await self._client.aio.models.generate_content(
                model=model,
                contents=_image_parts(image, prompt),
                config=_image_config(),
            )

        return await self._with_fallback(send, "edit_once")

    async def generate_variations(
        self,
        image: bytes,
        directives: Sequence[str] = VARIATION_PROMPTS,
    ) -> List[EditResult]:
        """
        One independent edit per directive, all in flight at once.

        Results keep the directive order; a failed slot carries its own error
        and never cancels the others.
        """
        outcomes = await asyncio.gather(
            *(self.edit_once(image, prompt) for prompt in directives),
            return_exceptions=True,
        )
        results: List[EditResult] = []
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                results.append(EditResult.failure(outcome, "Failed to generate variation"))
            else:
                results.append(outcome)
        return results

    async def remove_background(self, image: bytes) -> EditResult:
        return await self.edit_once(image, REMOVE_BACKGROUND_PROMPT)

    async def generate_from_text(self, prompt: str) -> EditResult:
        """Product photo from a text description alone."""
        full_prompt = TEXT_TO_IMAGE_TEMPLATE.format(prompt=prompt)

        async def send(model: str) -> Any:
            return await self._client.aio.models.generate_content(
                model=model,
                contents=[types.Part.from_text(text=full_prompt)],
                config=_image_config(),
            )

        return await self._with_fallback(send, "generate_from_text")

    # ── Text-tier analysis ────────────────────────────────────────────────────

    async def _generate_text(self, image: bytes, prompt: str) -> str:
        try:
            response = await self._client.aio.models.generate_content(
                model=self.models.text,
                contents=_image_parts(image, prompt),
            )
        except Exception as exc:
            raise ProviderError(
                error_message(exc, "Request to Gemini failed"), classify_error(exc)
            ) from exc
        return response.text or ""

    async def generate_listing(
        self,
        image: bytes,
        brand_name: Optional[str] = None,
        tone: Optional[str] = None,
    ) -> ListingResult:
        """
        Titles, description, tags, category and price range for a product photo.

        Raises:
            ProviderError: the call itself failed.
            MalformedResponse: the reply held no usable listing JSON.
        """
        brand_context = f"Brand name: {brand_name}. " if brand_name else ""
        tone_context = f"Use a {tone} tone. " if tone else ""
        prompt = (
            f"{brand_context}{tone_context}"
            "Analyze this product image and generate a complete e-commerce listing.\n"
            f"{LISTING_SCHEMA}"
        )
        text = await self._generate_text(image, prompt)
        try:
            return ListingResult.model_validate(extract_json_object(text))
        except (MalformedResponse, ValidationError) as exc:
            logger.warning("listing reply unparseable: %s", exc)
            raise MalformedResponse("Failed to parse listing data") from exc

    async def analyze_seo(
        self,
        image: bytes,
        title: str,
        description: str,
        tags: Sequence[str],
    ) -> SEOResult:
        """
        Score an existing listing and suggest keywords / improvements.

        Raises:
            ProviderError: the call itself failed.
            MalformedResponse: the reply held no usable analysis JSON.
        """
        prompt = (
            "You are an e-commerce SEO expert. Analyze this product image and the following listing:\n"
            f'Title: "{title}"\n'
            f"Tags: {', '.join(tags)}\n"
            f'Description: "{description}"\n\n'
            f"{SEO_SCHEMA}"
        )
        text = await self._generate_text(image, prompt)
        try:
            return SEOResult.model_validate(extract_json_object(text))
        except (MalformedResponse, ValidationError) as exc:
            logger.warning("SEO reply unparseable: %s", exc)
            raise MalformedResponse("Failed to parse SEO analysis") from exc
