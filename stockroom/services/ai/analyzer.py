import asyncio
import logging
from typing import Any, Dict, Optional, Sequence, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError

from stockroom.schemas.analysis import (
    AnalysisFailure,
    ImageAnalysis,
    ListingCopy,
    MarketAnalysis,
    MarketplaceData,
    PurchasePriceSuggestion,
)
from stockroom.services.ai.base import AIProvider, InlineImage
from stockroom.services.ai.json_utils import parse_first_json_object
from stockroom.services.exceptions import AnalysisInvalid, ValidationError

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

MARKET_ANALYSIS_SHAPE = """{
  "category": string,
  "demandScore": integer 0-100,
  "competitionLevel": "low" | "medium" | "high",
  "priceSuggestion": {"min": number, "max": number},
  "seoKeywords": [5 to 7 short strings],
  "suggestions": [3 to 5 short strings]
}"""

IMAGE_ANALYSIS_SHAPE = """{
  "title": string,
  "description": string,
  "category": string,
  "demandScore": integer 0-100,
  "competitionLevel": "low" | "medium" | "high",
  "priceSuggestion": {"min": number, "max": number},
  "seoKeywords": [5 to 7 short strings],
  "suggestions": [3 to 5 short strings]
}"""


class AIAnalyzer:
    """
    Turns product text or photos into validated market analyses.

    The provider only returns raw text; everything the model says is parsed
    from the first JSON object in the answer and checked against a closed
    schema before it leaves this class.
    """

    def __init__(
        self,
        provider: AIProvider,
        batch_size: int = 5,
        batch_delay_seconds: float = 1.0,
    ):
        self.provider = provider
        self.batch_size = max(1, min(batch_size, 5))
        self.batch_delay_seconds = max(1.0, batch_delay_seconds)

    @staticmethod
    def _parse(raw_text: str, schema: Type[SchemaT]) -> SchemaT:
        try:
            data = parse_first_json_object(raw_text)
        except ValueError as e:
            logger.warning(f"AI response is not parseable JSON: {e}")
            raise AnalysisInvalid(f"Failed to parse analysis results: {e}", raw_text=raw_text) from e

        try:
            return schema.model_validate(data)
        except SchemaValidationError as e:
            logger.warning(f"AI response failed {schema.__name__} validation: {e.error_count()} errors")
            raise AnalysisInvalid(
                f"Analysis does not match the expected {schema.__name__} shape",
                raw_text=raw_text,
                errors=e.errors(include_url=False, include_input=False),
            ) from e

    async def analyze_text(
        self,
        name: str,
        description: Optional[str] = None,
        condition: Optional[str] = None,
    ) -> MarketAnalysis:
        if not name or not name.strip():
            raise ValidationError("Product name is required for analysis", field="name")

        condition = getattr(condition, "value", condition) or "used_good"
        condition_label = condition.replace("_", " ")
        prompt = f"""
        Analyze this product for an e-commerce inventory system, considering it is in {condition_label} condition.

        Name: {name}
        Description: {description or "not provided"}
        Condition: {condition}

        Provide the product category, 5-7 SEO keywords, 3-5 specific suggestions to improve the
        listing considering its condition, a demand score (0-100), the competition level and a
        price range in USD for NEW condition. Final prices are adjusted for condition afterwards.

        Return ONLY a valid JSON object with exactly these keys and nothing else:
        {MARKET_ANALYSIS_SHAPE}
        """
        raw = await self.provider.generate_text(prompt)
        return self._parse(raw, MarketAnalysis)

    async def analyze_images(self, images: Sequence[InlineImage]) -> ImageAnalysis:
        if not images:
            raise ValidationError("No images provided", field="images")

        prompt = f"""
        Analyze these product images and provide:
        1. A clear, SEO-optimized product title
        2. A detailed product description
        3. The most suitable product category
        4. A demand score (0-100), the competition level and a price range in USD
        5. 5-7 SEO keywords
        6. 3-5 suggestions for listing improvement

        Return ONLY a valid JSON object with exactly these keys and nothing else:
        {IMAGE_ANALYSIS_SHAPE}
        """
        raw = await self.provider.generate_with_images(prompt, images)
        return self._parse(raw, ImageAnalysis)

    async def analyze_batch(self, products: Sequence[Any]) -> Dict[int, Union[MarketAnalysis, AnalysisFailure]]:
        """
        Analyzes products in chunks of at most ``batch_size`` concurrent calls,
        sleeping between chunks. A failed item becomes an ``AnalysisFailure``;
        the batch itself never raises.
        """
        results: Dict[int, Union[MarketAnalysis, AnalysisFailure]] = {}

        for offset in range(0, len(products), self.batch_size):
            if offset:
                await asyncio.sleep(self.batch_delay_seconds)

            chunk = products[offset:offset + self.batch_size]
            outcomes = await asyncio.gather(
                *(self.analyze_text(p.name, p.description, p.condition) for p in chunk),
                return_exceptions=True,
            )

            for product, outcome in zip(chunk, outcomes):
                if isinstance(outcome, Exception):
                    logger.warning(f"Batch analysis failed for product {product.id}: {outcome}")
                    results[product.id] = AnalysisFailure(
                        product_id=product.id,
                        error=getattr(outcome, "message", None) or str(outcome) or outcome.__class__.__name__,
                        error_code=getattr(outcome, "error_code", "ANALYSIS_FAILED"),
                    )
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    results[product.id] = outcome

        logger.info(
            f"Batch analysis finished: {len(results)} products, "
            f"{sum(isinstance(r, AnalysisFailure) for r in results.values())} failed"
        )
        return results

    async def generate_listing_copy(self, product: Any) -> ListingCopy:
        prompt = f"""
        Create an optimized eBay listing for this product:
        Name: {product.name}
        Description: {product.description or "not provided"}
        Condition: {product.condition}
        Brand: {product.brand or "unbranded"}
        Category: {product.category or "unspecified"}

        Generate a title of at most 80 characters, a detailed description, the most suitable
        eBay category and a list of search keywords.

        Return ONLY a valid JSON object with exactly these keys:
        {{"title": string, "description": string, "suggestedCategory": string, "keywords": [string]}}
        """
        raw = await self.provider.generate_text(prompt)
        return self._parse(raw, ListingCopy)

    async def suggest_purchase_price(
        self,
        current_price: Optional[float] = None,
        condition: Optional[str] = None,
        category: Optional[str] = None,
        marketplace_data: Optional[MarketplaceData] = None,
    ) -> PurchasePriceSuggestion:
        if marketplace_data is not None:
            market_lines = (
                f"- Current eBay Price Range: ${marketplace_data.lowest_price} - ${marketplace_data.highest_price}\n"
                f"        - Average Price: ${marketplace_data.average_price}\n"
                f"        - Number of Active Listings: {marketplace_data.active_listings}\n"
                f"        - Total Sales: {marketplace_data.sold_count}"
            )
        elif current_price is not None:
            market_lines = f"- Current Market Price: ${current_price}"
        else:
            raise ValidationError(
                "A current price or marketplace data is required",
                field="currentPrice",
            )

        prompt = f"""
        As an expert reseller, analyze this product's market data and suggest an optimal purchase price.

        Market Data:
        {market_lines}
        - Product Condition: {condition or "unspecified"}
        - Category: {category or "unspecified"}

        The purchase price should allow a healthy margin (aim for 30-40% ROI) while staying
        competitive. Confidence is 0-100 and estimatedROI is a percentage.

        Return ONLY a valid JSON object with exactly these keys:
        {{"suggestedPurchasePrice": number, "confidence": number, "reasoning": string, "estimatedROI": number}}
        """
        raw = await self.provider.generate_text(prompt)
        return self._parse(raw, PurchasePriceSuggestion)
