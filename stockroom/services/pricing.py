from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Any

from stockroom.schemas.analysis import MarketAnalysis, MarketplaceData, PriceSuggestion, ProductCondition
from stockroom.services.exceptions import ValidationError

CONDITION_DISCOUNTS: dict[str, Decimal] = {
    ProductCondition.NEW.value: Decimal("1.00"),
    ProductCondition.OPEN_BOX.value: Decimal("0.85"),
    ProductCondition.USED_LIKE_NEW.value: Decimal("0.80"),
    ProductCondition.USED_GOOD.value: Decimal("0.70"),
    ProductCondition.USED_FAIR.value: Decimal("0.60"),
}

BASELINE_MARKUP = Decimal("1.40")
MIN_MARGIN = Decimal("1.20")

HIGH_DEMAND_SOLD = 30
LOW_DEMAND_SOLD = 10
HIGH_COMPETITION_LISTINGS = 50

CENT = Decimal("0.01")


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps floats like 0.1 from dragging binary noise along
    return Decimal(str(value))


def _floor(value: Decimal) -> Decimal:
    return value.to_integral_value(rounding=ROUND_FLOOR)


def _ceil(value: Decimal) -> Decimal:
    return value.to_integral_value(rounding=ROUND_CEILING)


def condition_discount(condition: str | ProductCondition | None) -> Decimal:
    key = condition.value if isinstance(condition, ProductCondition) else (condition or ProductCondition.USED_GOOD.value)
    try:
        return CONDITION_DISCOUNTS[key]
    except KeyError:
        raise ValidationError(
            f"Unknown product condition: {key}",
            field="condition",
            actual_value=key,
            constraints={"allowed": list(CONDITION_DISCOUNTS)},
        ) from None


def synthesize_sale_price(
    condition: str | ProductCondition | None,
    purchase_price: Decimal | float | None = None,
    market_analysis: MarketAnalysis | None = None,
    marketplace_data: MarketplaceData | None = None,
    price_suggestion: PriceSuggestion | None = None,
) -> Decimal:
    """
    Derives a sale price from the strongest available signal.

    Marketplace statistics win over the AI price range, which wins over a
    plain markup on the purchase price. Whenever a purchase price is known
    the result never drops below a 20% margin over it.
    """
    d = condition_discount(condition)

    cost = None
    if purchase_price is not None:
        cost = _to_decimal(purchase_price)
        if cost < 0:
            raise ValidationError(
                "Purchase price must not be negative",
                field="purchase_price",
                actual_value=purchase_price,
                constraints={"min": 0},
            )

    # a bare range (e.g. a quoted current price) stands in when there is no AI analysis
    suggestion = market_analysis.price_suggestion if market_analysis is not None else price_suggestion

    if marketplace_data is not None:
        base = _to_decimal(marketplace_data.recommended_price)
        if marketplace_data.sold_count > HIGH_DEMAND_SOLD:
            base *= Decimal("1.10")
        elif marketplace_data.sold_count < LOW_DEMAND_SOLD:
            base *= Decimal("0.90")
        if marketplace_data.active_listings > HIGH_COMPETITION_LISTINGS:
            base *= Decimal("0.95")
        if suggestion is not None:
            mean = (_to_decimal(suggestion.min) + _to_decimal(suggestion.max)) / 2
            base = Decimal("0.6") * base + Decimal("0.4") * mean
        adjusted = _floor(base * d)
    elif suggestion is not None:
        adjusted = _floor(_to_decimal(suggestion.min) * d)
    elif cost is not None:
        adjusted = _ceil(cost * BASELINE_MARKUP / d)
    else:
        raise ValidationError(
            "At least one pricing signal is required (marketplace data, AI price range or purchase price)",
            field="purchase_price",
        )

    if cost is not None:
        adjusted = max(adjusted, _ceil(cost * MIN_MARGIN))

    return adjusted.quantize(CENT, rounding=ROUND_HALF_UP)


def widen_price_suggestion(suggestion: PriceSuggestion, recommended_price: float) -> PriceSuggestion:
    """Merging marketplace data may widen the AI range, never narrow it."""
    # same float arithmetic as any check against the stored bounds
    low = min(suggestion.min, recommended_price * 0.9)
    high = max(suggestion.max, recommended_price * 1.1)
    return PriceSuggestion(min=low, max=high)
