import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stockroom.db import get_session

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("")
def get_health(session: Session = Depends(get_session)):
    """
    Liveness plus a trivial database round trip.
    """
    db_ok = False
    try:
        session.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")

    return {
        "status": "ok",
        "database": "ok" if db_ok else "error",
    }
