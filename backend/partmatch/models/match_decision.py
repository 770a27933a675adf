"""Match decision audit SQLAlchemy model."""

from uuid import uuid4

from sqlalchemy import Column, DateTime, Float, Index, String, Text, Uuid

from .base import Base, PortableJSONB, utcnow


class MatchDecisionEvent(Base):
    """Append-only record of one reviewer decision on a proposed match.

    Both approvals and rejections are recorded. Rejections never produce
    training data; they are kept for quality analytics only.
    """
    __tablename__ = "match_decision_event"

    id = Column(Uuid, primary_key=True, default=uuid4)
    org_id = Column(Uuid, nullable=False)
    reviewer_id = Column(Uuid, nullable=True)

    decision = Column(String(16), nullable=False)  # approved, rejected
    query_text = Column(Text, nullable=False)
    normalized_query = Column(Text, nullable=False)
    catalog_entry_id = Column(String(64), nullable=False)

    tier = Column(String(32), nullable=True)
    final_score = Column(Float, nullable=True)
    # Full candidate snapshot (component scores, rationale)
    candidate_json = Column(PortableJSONB, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_match_decision_event_org_created", "org_id", "created_at"),
    )
