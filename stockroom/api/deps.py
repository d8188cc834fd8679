from fastapi import Depends, Request
from sqlalchemy.orm import Session

from stockroom.db import get_session
from stockroom.ebay_client import EbayClient
from stockroom.models import Product, User
from stockroom.services.ai.analyzer import AIAnalyzer
from stockroom.services.credential_store import CredentialStore
from stockroom.services.exceptions import NotFound, Unauthenticated
from stockroom.services.image_processing import ImageNormalizer
from stockroom.services.listing_orchestrator import ListingOrchestrator
from stockroom.services.marketplace_service import MarketplaceService


def get_current_user(request: Request, session: Session = Depends(get_session)) -> User:
    """
    Resolves the user id the login service wrote into the signed session
    cookie. Missing or unknown ids are unauthenticated.
    """
    user_id = request.session.get("user_id")
    if user_id is None:
        raise Unauthenticated()
    try:
        user = session.get(User, int(user_id))
    except (TypeError, ValueError):
        raise Unauthenticated() from None
    if user is None:
        raise Unauthenticated()
    return user


def get_owned_product(session: Session, user: User, product_id: int) -> Product:
    product = session.get(Product, product_id)
    if product is None or product.owner_user_id != user.id:
        raise NotFound("Product not found", product_id=product_id)
    return product


def get_ebay_client(request: Request) -> EbayClient:
    return request.app.state.ebay_client


def get_credential_store(request: Request) -> CredentialStore:
    return request.app.state.credentials


def get_marketplace_service(request: Request) -> MarketplaceService:
    return request.app.state.marketplace


def get_analyzer(request: Request) -> AIAnalyzer:
    return request.app.state.analyzer


def get_orchestrator(request: Request) -> ListingOrchestrator:
    return request.app.state.orchestrator


def get_normalizer(request: Request) -> ImageNormalizer:
    return request.app.state.normalizer
