"""
Product enrichment endpoints
- AI + marketplace analysis run with sale price synthesis
- stub listing generation
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends

from stockroom.api.deps import get_current_user, get_orchestrator
from stockroom.models import User
from stockroom.schemas.product import AnalysisRunResponse, ProductResponse
from stockroom.schemas.requests import AnalyzeProductRequest, image_parts_to_files
from stockroom.services.listing_orchestrator import ListingOrchestrator

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/{product_id}/analyze", response_model=AnalysisRunResponse)
async def analyze_product(
    product_id: int,
    body: Optional[AnalyzeProductRequest] = None,
    user: User = Depends(get_current_user),
    orchestrator: ListingOrchestrator = Depends(get_orchestrator),
):
    """
    Text-only analysis, or image-first analysis when images are posted.
    Without a linked eBay account the AI result is still saved and the
    response carries ``partial`` and ``redirectTo``.
    """
    body = body or AnalyzeProductRequest()
    files = image_parts_to_files(body.images) if body.images else None

    result = await orchestrator.analyze_product(
        user.id,
        product_id,
        images=files,
        include_marketplace=body.include_marketplace,
        wait=body.wait,
    )
    if result.error is not None:
        raise result.error

    return AnalysisRunResponse(
        product=ProductResponse.model_validate(result.product),
        state=result.state.value,
        partial=result.partial,
        redirect_to=result.redirect_to,
        message=result.message,
    )


@router.post("/{product_id}/generate-listing", response_model=ProductResponse)
async def generate_listing(
    product_id: int,
    user: User = Depends(get_current_user),
    orchestrator: ListingOrchestrator = Depends(get_orchestrator),
):
    product = await orchestrator.generate_listing(user.id, product_id)
    logger.info(f"User {user.id}: stub listing {product.listing_id} written for product {product_id}")
    return product
