"""
Listing orchestrator runs against SQLite, a scripted AI provider and a mocked eBay.
"""

import asyncio
from decimal import Decimal

import httpx
import pytest

from conftest import IMAGE_ANALYSIS, MARKET_ANALYSIS, FakeProvider, make_png, mock_transport, search_payload
from stockroom.ebay_client import EbayClient
from stockroom.models import Product
from stockroom.services.ai.analyzer import AIAnalyzer
from stockroom.services.credential_store import CredentialStore
from stockroom.services.exceptions import (
    AnalysisInvalid,
    BatchTooLarge,
    ConcurrentRun,
    NotAuthorized,
    NotFound,
    UpstreamError,
    ValidationError,
)
from stockroom.services.image_processing import ImageFile, ImageNormalizer
from stockroom.services.listing_orchestrator import ListingOrchestrator, RunState
from stockroom.services.marketplace_service import MarketplaceService


def _no_ebay(request):
    raise AssertionError(f"unexpected eBay call: {request.url}")


def _orchestrator(session_factory, provider, handler=_no_ebay, requests=None) -> ListingOrchestrator:
    credentials = CredentialStore(session_factory)
    client = EbayClient("cid", "secret", "ru-name", transport=mock_transport(handler, requests))
    return ListingOrchestrator(
        session_factory,
        analyzer=AIAnalyzer(provider),
        normalizer=ImageNormalizer(),
        marketplace=MarketplaceService(client, credentials),
        credentials=credentials,
    )


def _reload(session_factory, product_id) -> Product:
    with session_factory() as session:
        return session.get(Product, product_id)


@pytest.mark.integration
class TestAnalyzeProduct:

    @pytest.mark.asyncio
    async def test_partial_success_without_credentials(self, session_factory, user, product):
        orchestrator = _orchestrator(session_factory, FakeProvider([MARKET_ANALYSIS]))

        result = await orchestrator.analyze_product(user.id, product.id)

        assert result.state == RunState.DONE
        assert result.partial is True
        assert result.redirect_to == "/settings/ebay-auth"
        assert result.error is None

        stored = _reload(session_factory, product.id)
        assert stored.analysis["marketAnalysis"]["demandScore"] == 72
        assert "marketplaceData" not in stored.analysis
        # floor(80 x 0.70) = 56 is clamped to ceil(50 x 1.20) = 60
        assert stored.sale_price == Decimal("60.00")

    @pytest.mark.asyncio
    async def test_existing_marketplace_data_is_kept_on_partial_run(self, session_factory, user, make_product):
        previous = {
            "currentPrice": 150.0, "averagePrice": 150.0, "lowestPrice": 100.0, "highestPrice": 200.0,
            "soldCount": 12, "activeListings": 8, "recommendedPrice": 142.5,
            "lastUpdated": "2026-01-01T00:00:00Z",
        }
        product = make_product(user, analysis={"marketplaceData": previous})
        orchestrator = _orchestrator(session_factory, FakeProvider([MARKET_ANALYSIS]))

        result = await orchestrator.analyze_product(user.id, product.id)

        assert result.partial is True
        stored = _reload(session_factory, product.id)
        assert stored.analysis["marketplaceData"] == previous
        assert stored.analysis["marketAnalysis"]["category"] == MARKET_ANALYSIS["category"]

    @pytest.mark.asyncio
    async def test_full_run_merges_and_widens(self, session_factory, connected_user, connected_product):
        requests = []
        orchestrator = _orchestrator(
            session_factory,
            FakeProvider([MARKET_ANALYSIS]),
            lambda request: httpx.Response(200, json=search_payload([200, 220, 240, 260], total=40)),
            requests,
        )

        result = await orchestrator.analyze_product(connected_user.id, connected_product.id)

        assert result.state == RunState.DONE
        assert result.partial is False
        assert requests[0].url.params["q"] == connected_product.name

        stored = _reload(session_factory, connected_product.id)
        market = stored.analysis["marketplaceData"]
        suggestion = stored.analysis["marketAnalysis"]["priceSuggestion"]
        assert market["recommendedPrice"] == pytest.approx(218.5)
        assert market["activeListings"] == 4
        # never narrower than the recommended price +/- 10%
        assert suggestion["min"] == 80
        assert suggestion["max"] >= market["recommendedPrice"] * 1.1
        assert suggestion["min"] <= market["recommendedPrice"] * 0.9
        # demand boost 218.5 x 1.10, blended 0.6/0.4 with mean(80, 240.35) = 208.28, floor(x 0.70) = 145
        assert stored.sale_price == Decimal("145.00")

    @pytest.mark.asyncio
    async def test_ai_failure_writes_nothing(self, session_factory, connected_user, connected_product):
        orchestrator = _orchestrator(session_factory, FakeProvider(["Sorry, I can't do that."]))

        with pytest.raises(AnalysisInvalid):
            await orchestrator.analyze_product(connected_user.id, connected_product.id)

        stored = _reload(session_factory, connected_product.id)
        assert stored.analysis is None
        assert stored.sale_price is None

    @pytest.mark.asyncio
    async def test_marketplace_error_keeps_ai_result(self, session_factory, connected_user, connected_product):
        orchestrator = _orchestrator(
            session_factory,
            FakeProvider([MARKET_ANALYSIS]),
            lambda request: httpx.Response(503, text="service unavailable"),
        )

        result = await orchestrator.analyze_product(connected_user.id, connected_product.id)

        assert result.state == RunState.FAILED
        assert isinstance(result.error, UpstreamError)
        assert result.error.status_code == 502

        stored = _reload(session_factory, connected_product.id)
        assert stored.analysis["marketAnalysis"]["demandScore"] == 72
        assert "marketplaceData" not in stored.analysis

    @pytest.mark.asyncio
    async def test_text_only_skips_marketplace(self, session_factory, connected_user, connected_product):
        orchestrator = _orchestrator(session_factory, FakeProvider([MARKET_ANALYSIS]))

        result = await orchestrator.analyze_product(connected_user.id, connected_product.id, include_marketplace=False)

        assert result.state == RunState.DONE
        assert result.partial is False

    @pytest.mark.asyncio
    async def test_image_first_overwrites_identity_fields(self, session_factory, user, product):
        provider = FakeProvider([IMAGE_ANALYSIS])
        orchestrator = _orchestrator(session_factory, provider)

        result = await orchestrator.analyze_product(
            user.id,
            product.id,
            images=[ImageFile("front.png", "image/png", make_png(900, 900))],
            include_marketplace=False,
        )

        assert result.product.name == IMAGE_ANALYSIS["title"]
        assert result.product.description == IMAGE_ANALYSIS["description"]
        assert result.product.category == IMAGE_ANALYSIS["category"]
        assert provider.calls[0]["images"][0].mime_type == "image/jpeg"

    @pytest.mark.asyncio
    async def test_oversized_image_batch_never_reaches_ai(self, session_factory, user, product):
        provider = FakeProvider([IMAGE_ANALYSIS])
        orchestrator = _orchestrator(session_factory, provider)
        files = [ImageFile(f"p{i}.png", "image/png", b"\0" * int(2.4 * 1024 * 1024)) for i in range(5)]

        with pytest.raises(BatchTooLarge):
            await orchestrator.analyze_product(user.id, product.id, images=files)

        assert provider.calls == []
        assert _reload(session_factory, product.id).analysis is None

    @pytest.mark.asyncio
    async def test_text_mode_requires_description(self, session_factory, user, make_product):
        product = make_product(user, description="")
        orchestrator = _orchestrator(session_factory, FakeProvider([MARKET_ANALYSIS]))

        with pytest.raises(ValidationError):
            await orchestrator.analyze_product(user.id, product.id)

    @pytest.mark.asyncio
    async def test_other_users_product_is_not_found(self, session_factory, user, connected_product):
        orchestrator = _orchestrator(session_factory, FakeProvider([MARKET_ANALYSIS]))

        with pytest.raises(NotFound):
            await orchestrator.analyze_product(user.id, connected_product.id)

    @pytest.mark.asyncio
    async def test_concurrent_run_on_same_product(self, session_factory, user, product):
        gate = asyncio.Event()
        provider = FakeProvider([MARKET_ANALYSIS], gate=gate)
        orchestrator = _orchestrator(session_factory, provider)

        first = asyncio.create_task(orchestrator.analyze_product(user.id, product.id, include_marketplace=False))
        for _ in range(50):
            if orchestrator.single_flight.is_running(product.id):
                break
            await asyncio.sleep(0)

        with pytest.raises(ConcurrentRun):
            await orchestrator.analyze_product(user.id, product.id, wait=False)

        gate.set()
        result = await first
        assert result.state == RunState.DONE


@pytest.mark.integration
class TestGenerateListing:

    @pytest.mark.asyncio
    async def test_requires_linked_account(self, session_factory, user, product):
        provider = FakeProvider()
        orchestrator = _orchestrator(session_factory, provider)

        with pytest.raises(NotAuthorized):
            await orchestrator.generate_listing(user.id, product.id)
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_writes_stub_listing(self, session_factory, connected_user, connected_product):
        copy = {
            "title": "Sony WH-1000XM4 Noise Cancelling Headphones",
            "description": "<p>Lightly used</p>",
            "suggestedCategory": "Consumer Electronics > Headphones",
            "keywords": ["sony", "xm4"],
        }
        orchestrator = _orchestrator(session_factory, FakeProvider([copy]))

        product = await orchestrator.generate_listing(connected_user.id, connected_product.id)

        assert product.listing_id.startswith("mock-")
        assert product.listing_status == "active"
        assert product.listing_url == f"https://www.ebay.com/itm/{product.listing_id}"
        assert product.listing_data["suggestedCategory"] == "Consumer Electronics > Headphones"
        assert product.listing_synced_at is not None


@pytest.mark.integration
class TestStoredAnalysis:

    @pytest.mark.asyncio
    async def test_snake_case_blob_is_rewritten_in_camel_case(self, session_factory, user, make_product):
        legacy = {
            "marketplace_data": {
                "current_price": 150.0, "average_price": 150.0, "lowest_price": 100.0, "highest_price": 200.0,
                "sold_count": 12, "active_listings": 8, "recommended_price": 142.5,
                "last_updated": "2026-01-01T00:00:00Z",
            }
        }
        product = make_product(user, analysis=legacy)
        orchestrator = _orchestrator(session_factory, FakeProvider([MARKET_ANALYSIS]))

        await orchestrator.analyze_product(user.id, product.id)

        stored = _reload(session_factory, product.id)
        assert set(stored.analysis) == {"marketAnalysis", "marketplaceData"}
        assert stored.analysis["marketplaceData"]["recommendedPrice"] == 142.5
        assert stored.analysis["marketAnalysis"]["priceSuggestion"] == {"min": 80, "max": 140}

    @pytest.mark.asyncio
    async def test_unreadable_blob_is_replaced(self, session_factory, user, make_product):
        product = make_product(user, analysis={"unexpected": True})
        orchestrator = _orchestrator(session_factory, FakeProvider([MARKET_ANALYSIS]))

        await orchestrator.analyze_product(user.id, product.id, include_marketplace=False)

        stored = _reload(session_factory, product.id)
        assert list(stored.analysis) == ["marketAnalysis"]
