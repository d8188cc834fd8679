import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stockroom.models import User
from stockroom.services.exceptions import NotAuthorized, NotFound, StorageError, wrap_exception

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands timestamps back naive; everything we store is UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CredentialStore:
    """
    Per-user eBay OAuth tokens on the users row.

    A token counts as valid iff it is non-empty and its expiry lies strictly
    in the future. There is no refresh: an expired token means the user has
    to link the account again.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Callable[[], datetime] = _utcnow,
        redirect_to: str = "/settings/ebay-auth",
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.redirect_to = redirect_to

    @staticmethod
    def token_is_valid(access_token: Optional[str], expiry: Optional[datetime], now: datetime) -> bool:
        expiry = _as_aware(expiry)
        return bool(access_token) and expiry is not None and expiry > now

    def _read(self, user_id: int) -> Tuple[Optional[str], Optional[datetime]]:
        try:
            with self.session_factory() as session:
                user = session.get(User, user_id)
                if user is None:
                    raise NotFound(f"User {user_id} not found", user_id=user_id)
                return user.marketplace_access_token, _as_aware(user.marketplace_token_expiry)
        except SQLAlchemyError as e:
            raise wrap_exception(e, StorageError, table_name="users", operation="select") from e

    def is_connected(self, user_id: int) -> bool:
        access_token, expiry = self._read(user_id)
        return self.token_is_valid(access_token, expiry, self.clock())

    def status(self, user_id: int) -> Tuple[bool, Optional[datetime]]:
        access_token, expiry = self._read(user_id)
        return self.token_is_valid(access_token, expiry, self.clock()), expiry

    def store(self, user_id: int, access_token: str, refresh_token: Optional[str], expires_in_seconds: int) -> datetime:
        """Writes all three token fields in a single update and returns the new expiry."""
        expiry = self.clock() + timedelta(seconds=int(expires_in_seconds))
        try:
            with self.session_factory() as session:
                user = session.get(User, user_id)
                if user is None:
                    raise NotFound(f"User {user_id} not found", user_id=user_id)
                user.marketplace_access_token = access_token
                user.marketplace_refresh_token = refresh_token
                user.marketplace_token_expiry = expiry
                session.commit()
        except SQLAlchemyError as e:
            raise wrap_exception(e, StorageError, table_name="users", operation="update") from e

        logger.info(f"Stored eBay token for user {user_id}, expires at {expiry.isoformat()}")
        return expiry

    def get_valid_token(self, user_id: int) -> str:
        access_token, expiry = self._read(user_id)
        if not self.token_is_valid(access_token, expiry, self.clock()):
            logger.info(f"No valid eBay token for user {user_id}")
            raise NotAuthorized(redirect_to=self.redirect_to, user_id=user_id)
        return access_token
