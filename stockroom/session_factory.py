from sqlalchemy.orm import Session

from stockroom.db import SessionLocal


def session_factory() -> Session:
    return SessionLocal()
