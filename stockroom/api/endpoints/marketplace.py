import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from stockroom.api.deps import get_current_user, get_marketplace_service
from stockroom.models import User
from stockroom.schemas.analysis import MarketplaceData
from stockroom.services.exceptions import ValidationError
from stockroom.services.marketplace_service import MarketplaceService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/price", response_model=MarketplaceData)
async def get_price_stats(
    product_name: Optional[str] = Query(default=None, alias="productName"),
    user: User = Depends(get_current_user),
    marketplace: MarketplaceService = Depends(get_marketplace_service),
):
    """
    eBay price statistics for a product name (first 10 US listings).
    """
    if not product_name or not product_name.strip():
        raise ValidationError("Product name is required", field="productName")
    return await marketplace.fetch_price_stats(user.id, product_name)
