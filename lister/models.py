"""
models.py: Records persisted by the catalog and payloads parsed from Gemini.

Catalog records (Product, Settings, ChatMessage) are pydantic models so the
catalog can validate partial updates the same way it validates loads.
ListingResult / SEOResult mirror the JSON shapes the text-tier prompts ask for.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

PlatformFormat = Literal["etsy", "ebay", "amazon", "shopify"]
ToneOfVoice = Literal["professional", "casual", "luxury", "edgy"]

PLATFORMS = ("etsy", "ebay", "amazon", "shopify")
TONES = ("professional", "casual", "luxury", "edgy")


def utc_now() -> str:
    """ISO-8601 timestamp used for created_at / updated_at."""
    return datetime.now(timezone.utc).isoformat()


# ── Platform limits ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PlatformLimits:
    title_length: Optional[int]     # None = unbounded
    max_tags: Optional[int]         # None = unbounded

    def truncate_title(self, title: str) -> str:
        if self.title_length is None:
            return title
        return title[: self.title_length]

    def truncate_tags(self, tags: List[str]) -> List[str]:
        if self.max_tags is None:
            return list(tags)
        return list(tags[: self.max_tags])


PLATFORM_LIMITS = {
    "etsy": PlatformLimits(title_length=140, max_tags=13),
    "ebay": PlatformLimits(title_length=80, max_tags=30),
    "amazon": PlatformLimits(title_length=200, max_tags=250),
    "shopify": PlatformLimits(title_length=None, max_tags=None),
}


def platform_limits(platform: str) -> PlatformLimits:
    return PLATFORM_LIMITS.get(platform, PLATFORM_LIMITS["etsy"])


# ── Catalog records ───────────────────────────────────────────────────────────

class ChatMessage(BaseModel):
    role: Literal["user", "model"]
    text: Optional[str] = None
    image_path: Optional[str] = None


class Product(BaseModel):
    id: str
    title: str = ""
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    suggested_price_low: float = 0
    suggested_price_high: float = 0
    category: str = ""
    platform_format: PlatformFormat = "etsy"
    image_paths: List[str] = Field(default_factory=list)
    primary_image_index: int = 0
    ai_chat_history: List[ChatMessage] = Field(default_factory=list)
    listing_score: float = Field(default=0, ge=0, le=100)
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _check_images(self) -> "Product":
        if len(set(self.image_paths)) != len(self.image_paths):
            raise ValueError("image_paths must not contain duplicates")
        if self.image_paths and not 0 <= self.primary_image_index < len(self.image_paths):
            raise ValueError(
                f"primary_image_index {self.primary_image_index} out of range "
                f"for {len(self.image_paths)} image(s)"
            )
        return self

    @property
    def primary_image(self) -> Optional[str]:
        if not self.image_paths:
            return None
        return self.image_paths[self.primary_image_index]


class Settings(BaseModel):
    gemini_api_key: str = ""
    brand_name: str = ""
    brand_colors: List[str] = Field(default_factory=list)
    default_tone: ToneOfVoice = "professional"
    prefer_quality: bool = False


# ── Gemini payloads ───────────────────────────────────────────────────────────

class ListingDescription(BaseModel):
    overview: str
    features: List[str] = Field(default_factory=list)
    materials: str = ""
    care: str = ""

    def render(self) -> str:
        """Flatten to the plain-text description stored on the product."""
        features = "\n".join(f"• {f}" for f in self.features)
        return (
            f"{self.overview}\n\n"
            f"Features:\n{features}\n\n"
            f"Materials:\n{self.materials}\n\n"
            f"Care:\n{self.care}"
        )


class PriceRange(BaseModel):
    low: float = 0
    high: float = 0


class ListingResult(BaseModel):
    titles: List[str]
    description: ListingDescription
    tags: List[str]
    category: str = ""
    price_range: PriceRange = Field(default_factory=PriceRange, alias="priceRange")
    target_audience: str = Field(default="", alias="targetAudience")

    model_config = {"populate_by_name": True}


class ScoreBreakdown(BaseModel):
    title_quality: float = Field(alias="titleQuality", ge=0, le=100)
    description_completeness: float = Field(alias="descriptionCompleteness", ge=0, le=100)
    tag_relevance: float = Field(alias="tagRelevance", ge=0, le=100)
    keyword_optimization: float = Field(alias="keywordOptimization", ge=0, le=100)

    model_config = {"populate_by_name": True}


class SuggestedKeyword(BaseModel):
    keyword: str
    relevance: Literal["high", "medium", "low"]
    reason: str = ""


class CompetitorInsights(BaseModel):
    typical_price_range: PriceRange = Field(default_factory=PriceRange, alias="typicalPriceRange")
    common_keywords: List[str] = Field(default_factory=list, alias="commonKeywords")
    differentiators: List[str] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class SEOResult(BaseModel):
    listing_score: float = Field(alias="listingScore", ge=0, le=100)
    score_breakdown: ScoreBreakdown = Field(alias="scoreBreakdown")
    suggested_keywords: List[SuggestedKeyword] = Field(default_factory=list, alias="suggestedKeywords")
    improvements: List[str] = Field(default_factory=list)
    competitor_insights: CompetitorInsights = Field(
        default_factory=CompetitorInsights, alias="competitorInsights"
    )

    model_config = {"populate_by_name": True}
