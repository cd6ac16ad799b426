"""Declarative base and column helpers shared by every mapped table."""

from datetime import date, datetime, timezone

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def today() -> date:
    return utcnow().date()


# Tables the gateway owns outright; everything else belongs to LibreClinica
# and is only created locally for development and tests.
GATEWAY_TABLES = ("entity_signature",)
