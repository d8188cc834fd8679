from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from stockroom.schemas.analysis import ProductCondition


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ProductResponse(CamelModel):
    id: int
    owner_user_id: int
    name: str
    description: Optional[str] = None
    condition: str
    category: Optional[str] = None
    brand: Optional[str] = None
    purchase_price: Optional[Decimal] = None
    sale_price: Optional[Decimal] = None
    quantity: int = 0
    image_url: Optional[str] = None
    sold: bool = False
    analysis: Optional[dict] = None
    listing_id: Optional[str] = None
    listing_status: Optional[str] = None
    listing_url: Optional[str] = None
    listing_data: Optional[dict] = None
    listing_synced_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductBrief(CamelModel):
    """Minimal product shape the batch analyzer needs."""

    id: int
    name: str = Field(min_length=1)
    description: Optional[str] = None
    condition: Optional[ProductCondition] = None


class AnalysisRunResponse(CamelModel):
    product: ProductResponse
    state: str
    partial: bool = False
    redirect_to: Optional[str] = None
    message: Optional[str] = None
