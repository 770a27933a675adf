"""Training repository: training examples, competitor aliases, decision audit"""

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...database import session_scope
from ...matching.normalizer import normalize
from ...matching.ports import (
    QUALIFYING_QUALITIES,
    AliasRecord,
    DependencyUnavailableError,
    MatchCandidate,
    MatchDecision,
    MatchQuality,
    TrainingExampleUpsert,
    TrainingRecord,
    TrainingStore,
    as_utc,
)
from ...models.competitor_alias import CompetitorAlias
from ...models.match_decision import MatchDecisionEvent
from ...models.training_example import TrainingExample

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _insert_for(session: Session):
    """Dialect-specific INSERT supporting ON CONFLICT DO UPDATE."""
    dialect = session.get_bind().dialect.name
    try:
        return _DIALECT_INSERTS[dialect]
    except KeyError:
        raise DependencyUnavailableError(f"Upsert not supported on {dialect}") from None


def _to_training_record(row: TrainingExample) -> TrainingRecord:
    return TrainingRecord(
        id=row.id,
        normalized_text=row.normalized_text,
        catalog_entry_id=row.catalog_entry_id,
        quality=MatchQuality(row.quality),
        confidence=row.confidence,
        weight=row.weight,
        approved_at=as_utc(row.approved_at),
        source_text=row.source_text,
        times_referenced=row.times_referenced,
        last_referenced_at=as_utc(row.last_referenced_at),
        trigram_score=row.trigram_score,
        fuzzy_score=row.fuzzy_score,
        alias_score=row.alias_score,
        vector_score=row.vector_score,
        final_score=row.final_score,
    )


def _to_alias_record(row: CompetitorAlias) -> AliasRecord:
    return AliasRecord(
        id=row.id,
        catalog_entry_id=row.catalog_entry_id,
        competitor_name=row.competitor_name,
        normalized_name=row.normalized_name,
        confidence=row.confidence,
        competitor_sku=row.competitor_sku or "",
        normalized_sku=row.normalized_sku or "",
    )


class SqlTrainingStore(TrainingStore):
    """TrainingStore over SQLAlchemy.

    Every operation runs in its own short session, so one store instance
    can be shared by concurrent resolver threads.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        """Initialize store.

        Args:
            session_factory: Callable returning a new SQLAlchemy session
        """
        self.session_factory = session_factory

    def list_training_examples(
        self,
        org_id: UUID,
        approved_since: datetime,
        qualities: Iterable[MatchQuality] = QUALIFYING_QUALITIES,
    ) -> List[TrainingRecord]:
        labels = [MatchQuality(q).value for q in qualities]
        try:
            with session_scope(self.session_factory) as session:
                rows = session.execute(
                    select(TrainingExample).where(
                        TrainingExample.org_id == org_id,
                        TrainingExample.approved_at >= approved_since,
                        TrainingExample.quality.in_(labels),
                    )
                ).scalars().all()
                return [_to_training_record(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Failed to read training examples for org {org_id}", exc_info=True)
            raise DependencyUnavailableError(f"Training store unavailable: {str(e)}") from e

    def list_aliases(self, org_id: UUID) -> List[AliasRecord]:
        try:
            with session_scope(self.session_factory) as session:
                rows = session.execute(
                    select(CompetitorAlias).where(CompetitorAlias.org_id == org_id)
                ).scalars().all()
                return [_to_alias_record(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Failed to read competitor aliases for org {org_id}", exc_info=True)
            raise DependencyUnavailableError(f"Alias store unavailable: {str(e)}") from e

    def touch_examples(self, org_id: UUID, example_ids: Iterable[UUID], referenced_at: datetime) -> int:
        ids = list(dict.fromkeys(example_ids))
        if not ids:
            return 0
        try:
            with session_scope(self.session_factory) as session:
                result = session.execute(
                    update(TrainingExample)
                    .where(TrainingExample.org_id == org_id, TrainingExample.id.in_(ids))
                    .values(
                        times_referenced=TrainingExample.times_referenced + 1,
                        last_referenced_at=referenced_at,
                    )
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise DependencyUnavailableError(f"Failed to update reference counters: {str(e)}") from e

    def upsert_training_example(self, org_id: UUID, payload: TrainingExampleUpsert) -> TrainingRecord:
        """Insert the example or refresh the existing (text, entry) row in one statement.

        On conflict the confidence, quality, originating scores, approver,
        approval time and raw text are refreshed, the reference counter is
        incremented, and the manual weight is left untouched.
        """
        now = datetime.now(timezone.utc)
        approved_at = as_utc(payload.approved_at) or now
        quality = MatchQuality(payload.quality).value

        try:
            with session_scope(self.session_factory) as session:
                insert = _insert_for(session)
                stmt = insert(TrainingExample).values(
                    id=uuid4(),
                    org_id=org_id,
                    source_text=payload.source_text,
                    normalized_text=payload.normalized_text,
                    catalog_entry_id=payload.catalog_entry_id,
                    quality=quality,
                    confidence=payload.confidence,
                    weight=1.0,
                    trigram_score=payload.trigram_score,
                    fuzzy_score=payload.fuzzy_score,
                    alias_score=payload.alias_score,
                    vector_score=payload.vector_score,
                    final_score=payload.final_score,
                    approved_by=payload.approved_by,
                    approved_at=approved_at,
                    times_referenced=0,
                    created_at=now,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["org_id", "normalized_text", "catalog_entry_id"],
                    set_={
                        "confidence": stmt.excluded.confidence,
                        "quality": stmt.excluded.quality,
                        "source_text": stmt.excluded.source_text,
                        "trigram_score": stmt.excluded.trigram_score,
                        "fuzzy_score": stmt.excluded.fuzzy_score,
                        "alias_score": stmt.excluded.alias_score,
                        "vector_score": stmt.excluded.vector_score,
                        "final_score": stmt.excluded.final_score,
                        "approved_by": stmt.excluded.approved_by,
                        "approved_at": stmt.excluded.approved_at,
                        "times_referenced": TrainingExample.times_referenced + 1,
                        "last_referenced_at": now,
                        "updated_at": now,
                    },
                )
                session.execute(stmt)

                row = session.execute(
                    select(TrainingExample).where(
                        TrainingExample.org_id == org_id,
                        TrainingExample.normalized_text == payload.normalized_text,
                        TrainingExample.catalog_entry_id == payload.catalog_entry_id,
                    )
                ).scalar_one()
                return _to_training_record(row)
        except SQLAlchemyError as e:
            logger.error(f"Failed to upsert training example for org {org_id}", exc_info=True)
            raise DependencyUnavailableError(f"Training store unavailable: {str(e)}") from e

    def upsert_alias(
        self,
        org_id: UUID,
        catalog_entry_id: str,
        competitor_name: str,
        confidence: float,
        competitor_sku: Optional[str] = None,
        created_by: Optional[UUID] = None,
    ) -> AliasRecord:
        """Insert the alias or repoint / refresh the existing (name, SKU) row."""
        normalized_name = normalize(competitor_name)
        if not normalized_name:
            raise ValueError("competitor_name must not be blank")
        sku = (competitor_sku or "").strip()
        now = datetime.now(timezone.utc)

        try:
            with session_scope(self.session_factory) as session:
                insert = _insert_for(session)
                stmt = insert(CompetitorAlias).values(
                    id=uuid4(),
                    org_id=org_id,
                    catalog_entry_id=catalog_entry_id,
                    competitor_name=competitor_name.strip(),
                    normalized_name=normalized_name,
                    competitor_sku=sku,
                    normalized_sku=normalize(sku),
                    confidence=max(0.0, min(1.0, float(confidence))),
                    created_by=created_by,
                    created_at=now,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["org_id", "normalized_name", "competitor_sku"],
                    set_={
                        "catalog_entry_id": stmt.excluded.catalog_entry_id,
                        "competitor_name": stmt.excluded.competitor_name,
                        "confidence": stmt.excluded.confidence,
                        "updated_at": now,
                    },
                )
                session.execute(stmt)

                row = session.execute(
                    select(CompetitorAlias).where(
                        CompetitorAlias.org_id == org_id,
                        CompetitorAlias.normalized_name == normalized_name,
                        CompetitorAlias.competitor_sku == sku,
                    )
                ).scalar_one()
                return _to_alias_record(row)
        except SQLAlchemyError as e:
            logger.error(f"Failed to upsert competitor alias for org {org_id}", exc_info=True)
            raise DependencyUnavailableError(f"Alias store unavailable: {str(e)}") from e

    def record_decision_event(
        self,
        org_id: UUID,
        query_text: str,
        normalized_query: str,
        catalog_entry_id: str,
        decision: MatchDecision,
        reviewer_id: Optional[UUID],
        candidate: Optional[MatchCandidate] = None,
    ) -> None:
        event = MatchDecisionEvent(
            org_id=org_id,
            reviewer_id=reviewer_id,
            decision=MatchDecision(decision).value,
            query_text=query_text,
            normalized_query=normalized_query,
            catalog_entry_id=catalog_entry_id,
            tier=candidate.tier.value if candidate else None,
            final_score=candidate.final_score if candidate else None,
            candidate_json=candidate.to_dict() if candidate else None,
        )
        try:
            with session_scope(self.session_factory) as session:
                session.add(event)
        except SQLAlchemyError as e:
            logger.error(f"Failed to record match decision for org {org_id}", exc_info=True)
            raise DependencyUnavailableError(f"Decision log unavailable: {str(e)}") from e
