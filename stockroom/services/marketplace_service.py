from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable

from stockroom.ebay_client import EbayClient
from stockroom.schemas.analysis import MarketplaceData
from stockroom.services.credential_store import CredentialStore
from stockroom.services.exceptions import AuthRequired, NoData, ValidationError

logger = logging.getLogger(__name__)

RECOMMENDED_FACTOR = 0.95


def extract_prices(payload: dict[str, Any]) -> list[float]:
    prices: list[float] = []
    for item in payload.get("itemSummaries") or []:
        if not isinstance(item, dict):
            continue
        price = item.get("price")
        value = price.get("value") if isinstance(price, dict) else None
        if value is None or isinstance(value, bool):
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if math.isnan(number) or math.isinf(number):
            continue
        prices.append(number)
    return prices


def summarize_prices(payload: dict[str, Any], now: datetime, query: str | None = None) -> MarketplaceData:
    """
    Aggregates a Browse search response into price statistics.

    current_price is the median; for an even count it is the upper of the
    two middle values.
    """
    prices = extract_prices(payload)
    if not prices:
        raise NoData(query)

    ordered = sorted(prices)
    average = sum(ordered) / len(ordered)

    total = payload.get("total")
    sold_count = total if isinstance(total, int) and not isinstance(total, bool) and total > 0 else 0

    return MarketplaceData(
        current_price=ordered[len(ordered) // 2],
        average_price=average,
        lowest_price=ordered[0],
        highest_price=ordered[-1],
        sold_count=sold_count,
        active_listings=len(ordered),
        recommended_price=average * RECOMMENDED_FACTOR,
        last_updated=now,
    )


class MarketplaceService:
    def __init__(
        self,
        client: EbayClient,
        credentials: CredentialStore,
        search_limit: int = 10,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.client = client
        self.credentials = credentials
        self.search_limit = search_limit
        self.clock = clock

    async def fetch_price_stats(self, user_id: int, query: str) -> MarketplaceData:
        query = (query or "").strip()
        if not query:
            raise ValidationError("Product name is required", field="productName")

        token = self.credentials.get_valid_token(user_id)

        try:
            payload = await self.client.search_item_summaries(token, query, limit=self.search_limit)
        except AuthRequired as e:
            logger.warning(f"eBay rejected the token of user {user_id}: {e.context.get('upstream_status')}")
            raise AuthRequired(redirect_to=self.credentials.redirect_to, user_id=user_id) from e

        stats = summarize_prices(payload, self.clock(), query=query)
        logger.info(
            f"eBay price stats for '{query}': {stats.active_listings} listings, "
            f"median {stats.current_price:.2f}, recommended {stats.recommended_price:.2f}"
        )
        return stats
