"""SQLAlchemy models."""

from app.models.domain_record import DomainRecord, DomainStatus

__all__ = [
    "DomainRecord",
    "DomainStatus",
]
