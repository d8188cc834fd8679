import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Sequence

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stockroom.models import Product
from stockroom.schemas.analysis import Analysis, MarketAnalysis, MarketplaceData
from stockroom.services.ai.analyzer import AIAnalyzer
from stockroom.services.ai.base import InlineImage
from stockroom.services.credential_store import CredentialStore
from stockroom.services.exceptions import (
    AuthRequired,
    NoData,
    NotFound,
    ServiceError,
    StorageError,
    UpstreamError,
    UpstreamTimeout,
    ValidationError,
    wrap_exception,
)
from stockroom.services.image_processing import ImageFile, ImageNormalizer
from stockroom.services.marketplace_service import MarketplaceService
from stockroom.services.pricing import synthesize_sale_price, widen_price_suggestion
from stockroom.services.single_flight import SingleFlight

logger = logging.getLogger(__name__)


def _merged_analysis(raw: Optional[dict], **parts) -> dict:
    """Overlays the given parts on the stored blob; parts not given are kept as stored."""
    try:
        current = Analysis.from_stored(raw)
    except SchemaValidationError as e:
        logger.warning(f"Discarding unreadable stored analysis: {e.error_count()} errors")
        current = Analysis()
    return current.model_copy(update=parts).to_stored()


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING_AI = "running_ai"
    RUNNING_MARKETPLACE = "running_marketplace"
    MERGED = "merged"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RunResult:
    product: Product
    state: RunState
    partial: bool = False
    redirect_to: Optional[str] = None
    message: Optional[str] = None
    error: Optional[ServiceError] = None


class ListingOrchestrator:
    """
    Enriches one product with an AI market analysis, marketplace price
    statistics and a synthesized sale price.

    A run is an explicit sequence of checkpoints. Each checkpoint is one
    short session and one row update, so a failure later in the run never
    rolls back evidence that was already written.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        analyzer: AIAnalyzer,
        normalizer: ImageNormalizer,
        marketplace: MarketplaceService,
        credentials: CredentialStore,
        single_flight: Optional[SingleFlight] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.session_factory = session_factory
        self.analyzer = analyzer
        self.normalizer = normalizer
        self.marketplace = marketplace
        self.credentials = credentials
        self.single_flight = single_flight or SingleFlight()
        self.clock = clock

    def _load(self, user_id: int, product_id: int) -> Product:
        try:
            with self.session_factory() as session:
                product = session.get(Product, product_id)
                if product is None or product.owner_user_id != user_id:
                    raise NotFound("Product not found", product_id=product_id)
                return product
        except SQLAlchemyError as e:
            raise wrap_exception(e, StorageError, table_name="products", operation="select") from e

    def _checkpoint(self, user_id: int, product_id: int, step: str, mutate: Callable[[Product], None]) -> Product:
        try:
            with self.session_factory() as session:
                product = session.get(Product, product_id)
                if product is None or product.owner_user_id != user_id:
                    raise NotFound("Product not found", product_id=product_id)
                mutate(product)
                session.commit()
                session.refresh(product)
        except SQLAlchemyError as e:
            raise wrap_exception(e, StorageError, table_name="products", operation="update") from e

        logger.info(f"Product {product_id}: checkpoint '{step}' persisted")
        return product

    async def analyze_product(
        self,
        user_id: int,
        product_id: int,
        images: Optional[Sequence[ImageFile]] = None,
        include_marketplace: bool = True,
        wait: bool = True,
    ) -> RunResult:
        """
        Runs text-only analysis, or image-first analysis when ``images`` are
        given, followed by the marketplace leg unless disabled.

        AI failures propagate and leave the product untouched. Marketplace
        failures do not undo the AI checkpoint: a missing or rejected token
        yields a partial result with a redirect hint, any other upstream
        failure a FAILED result carrying the error.
        """
        async with self.single_flight.hold(product_id, wait=wait):
            product = self._load(user_id, product_id)
            logger.info(f"Product {product_id}: analysis run started (images={len(images or [])})")

            state = RunState.RUNNING_AI
            if images:
                encoded = await self.normalizer.normalize_batch(images)
                market_analysis: MarketAnalysis = await self.analyzer.analyze_images(
                    [InlineImage(data=data, mime_type="image/jpeg") for data in encoded]
                )
            else:
                if not (product.name or "").strip() or not (product.description or "").strip():
                    raise ValidationError(
                        "Text analysis requires a product name and description",
                        field="description",
                    )
                market_analysis = await self.analyzer.analyze_text(
                    product.name, product.description, product.condition
                )

            from_images = bool(images)

            def apply_ai(row: Product) -> None:
                if from_images:
                    row.name = market_analysis.title
                    row.description = market_analysis.description
                    row.category = market_analysis.category
                row.analysis = _merged_analysis(row.analysis, market_analysis=market_analysis)
                row.sale_price = synthesize_sale_price(
                    row.condition, row.purchase_price, market_analysis, None
                )

            product = self._checkpoint(user_id, product_id, "market_analysis", apply_ai)

            if not include_marketplace:
                return RunResult(product=product, state=RunState.DONE)

            state = RunState.RUNNING_MARKETPLACE
            try:
                marketplace_data: MarketplaceData = await self.marketplace.fetch_price_stats(user_id, product.name)
            except AuthRequired as e:
                logger.warning(f"Product {product_id}: marketplace leg skipped, eBay not linked")
                return RunResult(
                    product=product,
                    state=RunState.DONE,
                    partial=True,
                    redirect_to=e.redirect_to,
                    message="Connect your eBay account to include live marketplace prices",
                )
            except (UpstreamError, UpstreamTimeout, NoData) as e:
                logger.warning(f"Product {product_id}: marketplace leg failed in state {state.value}: {e}")
                return RunResult(
                    product=product,
                    state=RunState.FAILED,
                    message=e.message,
                    error=e,
                )

            state = RunState.MERGED
            widened = market_analysis.model_copy(
                update={
                    "price_suggestion": widen_price_suggestion(
                        market_analysis.price_suggestion, marketplace_data.recommended_price
                    )
                }
            )

            def apply_marketplace(row: Product) -> None:
                row.analysis = _merged_analysis(
                    row.analysis, market_analysis=widened, marketplace_data=marketplace_data
                )
                row.sale_price = synthesize_sale_price(
                    row.condition, row.purchase_price, widened, marketplace_data
                )

            product = self._checkpoint(user_id, product_id, state.value, apply_marketplace)
            return RunResult(product=product, state=RunState.DONE)

    async def generate_listing(self, user_id: int, product_id: int) -> Product:
        """
        Writes a stub listing (mock id, no marketplace call) built from
        AI-generated listing copy. Requires a linked eBay account.
        """
        self.credentials.get_valid_token(user_id)
        product = self._load(user_id, product_id)

        copy = await self.analyzer.generate_listing_copy(product)
        now = self.clock()
        listing_id = f"mock-{int(now.timestamp() * 1000)}"

        def apply_listing(row: Product) -> None:
            row.listing_id = listing_id
            row.listing_status = "active"
            row.listing_url = f"https://www.ebay.com/itm/{listing_id}"
            row.listing_data = copy.model_dump(mode="json", by_alias=True)
            row.listing_synced_at = now

        return self._checkpoint(user_id, product_id, "listing", apply_listing)
