"""Competitor alias SQLAlchemy model."""

from uuid import uuid4

from sqlalchemy import Column, DateTime, Float, ForeignKey, String, Text, UniqueConstraint, Uuid

from .base import Base, utcnow


class CompetitorAlias(Base):
    """Literal mapping from a competitor's name / SKU to a catalog entry.

    ``competitor_sku`` is stored as an empty string when unknown so the
    unique key (org_id, normalized_name, competitor_sku) also holds for
    aliases without a SKU.
    """
    __tablename__ = "competitor_alias"

    id = Column(Uuid, primary_key=True, default=uuid4)
    org_id = Column(Uuid, nullable=False)
    catalog_entry_id = Column(String(64), ForeignKey("catalog_entry.id", ondelete="CASCADE"), nullable=False)

    competitor_name = Column(Text, nullable=False)
    normalized_name = Column(Text, nullable=False)
    competitor_sku = Column(Text, nullable=False, default="")
    normalized_sku = Column(Text, nullable=False, default="")
    confidence = Column(Float, nullable=False, default=1.0)

    created_by = Column(Uuid, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("org_id", "normalized_name", "competitor_sku", name="uq_competitor_alias_name_sku"),
    )

    def to_dict(self):
        """Convert alias to dictionary representation."""
        return {
            "id": str(self.id),
            "catalog_entry_id": self.catalog_entry_id,
            "competitor_name": self.competitor_name,
            "competitor_sku": self.competitor_sku or None,
            "normalized_name": self.normalized_name,
            "confidence": self.confidence,
        }
