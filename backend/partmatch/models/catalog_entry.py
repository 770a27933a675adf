"""Catalog entry SQLAlchemy model."""

from sqlalchemy import Boolean, Column, DateTime, Index, String, Text, Uuid

from ..config import get_settings
from .base import Base, PortableVector, utcnow


class CatalogEntry(Base):
    """Sellable catalog item that line items are matched against.

    Rows are written by the catalog ingestion pipeline; the matching engine
    only reads them. ``embedding`` is attached by that pipeline too.
    """
    __tablename__ = "catalog_entry"

    # Entry identifiers are caller-defined (e.g. "56X212C8")
    id = Column(String(64), primary_key=True)
    org_id = Column(Uuid, nullable=False)

    sku = Column(Text, nullable=False)
    name = Column(Text, nullable=False)
    manufacturer = Column(Text, nullable=True)
    category = Column(Text, nullable=True)
    embedding = Column(PortableVector(get_settings().EMBEDDING_DIMENSIONS), nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_catalog_entry_org_active", "org_id", "active"),
        Index("ix_catalog_entry_org_sku", "org_id", "sku"),
    )

    def to_dict(self):
        """Convert catalog entry to dictionary representation."""
        return {
            "id": self.id,
            "org_id": str(self.org_id),
            "sku": self.sku,
            "name": self.name,
            "manufacturer": self.manufacturer,
            "category": self.category,
            "active": self.active,
            "has_embedding": self.embedding is not None,
        }
