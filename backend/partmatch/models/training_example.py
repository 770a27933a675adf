"""Training example SQLAlchemy model."""

from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)

from .base import Base, utcnow


class TrainingExample(Base):
    """Human-approved mapping from source text to a catalog entry.

    Identity is (org_id, normalized_text, catalog_entry_id); re-approving
    the same pair refreshes the row instead of inserting a duplicate.

    Quality values: excellent, good, fair, poor. Only excellent and good
    feed the training tiers.
    """
    __tablename__ = "training_example"

    id = Column(Uuid, primary_key=True, default=uuid4)
    org_id = Column(Uuid, nullable=False)

    source_text = Column(Text, nullable=True)
    normalized_text = Column(Text, nullable=False)
    catalog_entry_id = Column(String(64), ForeignKey("catalog_entry.id", ondelete="CASCADE"), nullable=False)

    quality = Column(String(16), nullable=False, default="good")
    confidence = Column(Float, nullable=False, default=0.8)
    # Manual multiplier, 1.0 = neutral
    weight = Column(Float, nullable=False, default=1.0)

    # Scores of the originating match at approval time
    trigram_score = Column(Float, nullable=True)
    fuzzy_score = Column(Float, nullable=True)
    alias_score = Column(Float, nullable=True)
    vector_score = Column(Float, nullable=True)
    final_score = Column(Float, nullable=True)

    approved_by = Column(Uuid, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    times_referenced = Column(Integer, nullable=False, default=0)
    last_referenced_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("org_id", "normalized_text", "catalog_entry_id", name="uq_training_example_text_entry"),
        Index("ix_training_example_org_approved", "org_id", "approved_at"),
    )
