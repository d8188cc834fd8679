from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, model_validator
from pydantic.alias_generators import to_camel


class ProductCondition(str, Enum):
    NEW = "new"
    OPEN_BOX = "open_box"
    USED_LIKE_NEW = "used_like_new"
    USED_GOOD = "used_good"
    USED_FAIR = "used_fair"


ShortText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=120)]


class ClosedModel(BaseModel):
    """Accepts snake_case or camelCase keys, rejects anything else."""

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class PriceSuggestion(ClosedModel):
    min: float = Field(ge=0)
    max: float = Field(ge=0)

    @model_validator(mode="after")
    def check_order(self) -> "PriceSuggestion":
        if self.min > self.max:
            raise ValueError("price_suggestion.min must not exceed price_suggestion.max")
        return self


class MarketAnalysis(ClosedModel):
    demand_score: int = Field(ge=0, le=100)
    competition_level: Literal["low", "medium", "high"]
    price_suggestion: PriceSuggestion
    seo_keywords: List[ShortText] = Field(min_length=5, max_length=7)
    suggestions: List[ShortText] = Field(min_length=3, max_length=5)
    category: ShortText
    title: Optional[str] = None
    description: Optional[str] = None


class ImageAnalysis(MarketAnalysis):
    """Image mode also names and describes the product."""

    title: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
    description: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class MarketplaceData(ClosedModel):
    current_price: float
    average_price: float
    lowest_price: float
    highest_price: float
    sold_count: int = Field(ge=0)
    active_listings: int = Field(ge=0)
    recommended_price: float
    last_updated: datetime


class Analysis(ClosedModel):
    """
    Enrichment blob stored on the product row. Either part may be absent
    independently of the other.
    """

    market_analysis: Optional[MarketAnalysis] = None
    marketplace_data: Optional[MarketplaceData] = None

    @classmethod
    def from_stored(cls, raw: dict | None) -> "Analysis":
        return cls.model_validate(raw or {})

    def to_stored(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AnalysisFailure(BaseModel):
    """Per-item error sentinel of a batch analysis."""

    product_id: int
    error: str
    error_code: str = "ANALYSIS_FAILED"


class ListingCopy(ClosedModel):
    title: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=80)]
    description: str
    suggested_category: str
    keywords: List[str] = Field(default_factory=list)


class PurchasePriceSuggestion(ClosedModel):
    suggested_purchase_price: float = Field(ge=0)
    confidence: float = Field(ge=0, le=100)
    reasoning: str
    estimated_roi: float = Field(alias="estimatedROI")
