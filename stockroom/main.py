import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware

from stockroom.api.endpoints import analyze, credentials, health, marketplace, pricing, products
from stockroom.api.errors import register_exception_handlers
from stockroom.db import engine
from stockroom.ebay_client import EbayClient
from stockroom.models import Base
from stockroom.services.ai.analyzer import AIAnalyzer
from stockroom.services.ai.providers.gemini import GeminiProvider
from stockroom.services.credential_store import CredentialStore
from stockroom.services.image_processing import ImageNormalizer
from stockroom.services.listing_orchestrator import ListingOrchestrator
from stockroom.services.marketplace_service import MarketplaceService
from stockroom.services.single_flight import SingleFlight
from stockroom.session_factory import session_factory
from stockroom.settings import Settings, settings

logger = logging.getLogger(__name__)


def build_services(app: FastAPI, cfg: Settings) -> None:
    """Constructs the long-lived collaborators once and hangs them on app.state."""
    provider = GeminiProvider(
        api_keys=cfg.get_gemini_keys(),
        model_name=cfg.gemini_model,
        generation_config={
            "temperature": cfg.gemini_temperature,
            "top_p": cfg.gemini_top_p,
            "top_k": cfg.gemini_top_k,
            "max_output_tokens": cfg.gemini_max_output_tokens,
        },
        timeout_seconds=cfg.ai_timeout_seconds,
    )
    analyzer = AIAnalyzer(
        provider,
        batch_size=cfg.analysis_batch_size,
        batch_delay_seconds=cfg.analysis_batch_delay_seconds,
    )
    normalizer = ImageNormalizer(
        max_dimension=cfg.image_max_dimension,
        jpeg_quality=cfg.image_jpeg_quality,
        max_file_bytes=cfg.image_max_file_bytes,
        max_batch_bytes=cfg.image_max_batch_bytes,
        inter_file_delay_seconds=cfg.image_inter_file_delay_seconds,
        max_source_pixels=cfg.image_max_source_pixels,
    )
    credentials = CredentialStore(session_factory, redirect_to=cfg.credentials_settings_path)
    ebay_client = EbayClient.from_settings(cfg)
    marketplace = MarketplaceService(ebay_client, credentials, search_limit=cfg.ebay_search_limit)

    app.state.ebay_client = ebay_client
    app.state.credentials = credentials
    app.state.analyzer = analyzer
    app.state.normalizer = normalizer
    app.state.marketplace = marketplace
    app.state.orchestrator = ListingOrchestrator(
        session_factory,
        analyzer=analyzer,
        normalizer=normalizer,
        marketplace=marketplace,
        credentials=credentials,
        single_flight=SingleFlight(),
    )


def create_app(cfg: Settings = settings) -> FastAPI:
    logging.basicConfig(
        level=cfg.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    if not cfg.session_secret:
        raise RuntimeError("SESSION_SECRET must be set; refusing to start without a session signing key")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if cfg.db_auto_create_tables:
            Base.metadata.create_all(bind=engine)
        build_services(app, cfg)
        if not cfg.get_gemini_keys():
            logger.warning("No Gemini API key configured; analysis endpoints will fail")
        logger.info("Stockroom API started")
        yield

    app = FastAPI(title="Stockroom Listing Intelligence", lifespan=lifespan)
    app.add_middleware(SessionMiddleware, secret_key=cfg.session_secret, same_site="lax")
    register_exception_handlers(app)

    app.include_router(credentials.router, prefix="/api/credentials", tags=["Credentials"])
    app.include_router(marketplace.router, prefix="/api/marketplace", tags=["Marketplace"])
    app.include_router(analyze.router, prefix="/api/analyze", tags=["Analyze"])
    app.include_router(products.router, prefix="/api/products", tags=["Products"])
    app.include_router(pricing.router, prefix="/api/price", tags=["Pricing"])
    app.include_router(health.router, prefix="/api/health", tags=["Health"])

    return app


app = create_app()
