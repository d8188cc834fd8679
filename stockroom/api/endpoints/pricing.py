import logging

from fastapi import APIRouter, Depends
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.orm import Session

from stockroom.api.deps import get_analyzer, get_current_user, get_owned_product
from stockroom.db import get_session
from stockroom.models import User
from stockroom.schemas.analysis import Analysis, PriceSuggestion, PurchasePriceSuggestion
from stockroom.schemas.requests import PurchaseSuggestionRequest, SynthesizePriceRequest
from stockroom.services.ai.analyzer import AIAnalyzer
from stockroom.services.pricing import synthesize_sale_price

router = APIRouter()
logger = logging.getLogger(__name__)


def _stored_analysis(session: Session, user: User, product_id: int) -> Analysis:
    product = get_owned_product(session, user, product_id)
    try:
        return Analysis.from_stored(product.analysis)
    except SchemaValidationError as e:
        logger.warning(f"Ignoring unreadable analysis on product {product_id}: {e.error_count()} errors")
        return Analysis()


@router.post("/synthesize")
def synthesize_price(
    body: SynthesizePriceRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """
    Recommended sale price from the buy price, the condition and whatever
    market evidence is at hand (stored analysis, or a quoted current price).
    """
    analysis = _stored_analysis(session, user, body.product_id) if body.product_id is not None else Analysis()

    quoted = None
    if analysis.market_analysis is None and body.current_price is not None:
        quoted = PriceSuggestion(min=body.current_price, max=body.current_price)

    price = synthesize_sale_price(
        body.condition,
        purchase_price=body.buy_price,
        market_analysis=analysis.market_analysis,
        marketplace_data=analysis.marketplace_data,
        price_suggestion=quoted,
    )
    return {"recommendedSalePrice": float(price)}


@router.post("/purchase-suggestion", response_model=PurchasePriceSuggestion)
async def suggest_purchase_price(
    body: PurchaseSuggestionRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    analyzer: AIAnalyzer = Depends(get_analyzer),
):
    marketplace_data = None
    category = body.category
    if body.product_id is not None:
        analysis = _stored_analysis(session, user, body.product_id)
        marketplace_data = analysis.marketplace_data
        if category is None and analysis.market_analysis is not None:
            category = analysis.market_analysis.category

    return await analyzer.suggest_purchase_price(
        current_price=body.current_price,
        condition=body.condition.value if body.condition else None,
        category=category,
        marketplace_data=marketplace_data,
    )
