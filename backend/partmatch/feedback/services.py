"""Feedback learning services for partmatch

This module provides services for:
- Turning reviewer approvals into training examples and competitor aliases
- Recording every reviewer decision for audit and quality analytics
- Explicit competitor alias administration
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union
from uuid import UUID

from ..config import Settings, get_settings
from ..matching.hybrid_matcher import HybridMatcher
from ..matching.normalizer import normalize
from ..matching.ports import (
    AliasRecord,
    CatalogItem,
    MatchCandidate,
    MatchDecision,
    MatchQuality,
    MatchTier,
    TrainingExampleUpsert,
    TrainingRecord,
    TrainingStore,
    UnknownCatalogEntryError,
)
from ..matching.similarity import clamp01
from ..observability.metrics import feedback_decisions_total

logger = logging.getLogger(__name__)


@dataclass
class ReportedScores:
    """Scores of the originating candidate, as shown to the reviewer."""
    final_score: float
    trigram_score: float = 0.0
    fuzzy_score: float = 0.0
    alias_score: float = 0.0
    vector_score: float = 0.0
    tier: MatchTier = MatchTier.ALGORITHMIC

    def to_candidate(self, entry: CatalogItem) -> MatchCandidate:
        return MatchCandidate(
            entry=entry,
            vector_score=clamp01(self.vector_score),
            trigram_score=clamp01(self.trigram_score),
            fuzzy_score=clamp01(self.fuzzy_score),
            alias_score=clamp01(self.alias_score),
            final_score=clamp01(self.final_score),
            tier=MatchTier(self.tier),
            rationale="Scores reported by reviewer client",
            matched_via="training" if MatchTier(self.tier) != MatchTier.ALGORITHMIC else "reported",
        )


class LearningFeedbackSink:
    """Apply reviewer decisions to the training corpus.

    Approvals upsert one training example per (normalized query, entry)
    and, when enabled, a competitor alias from the raw query text.
    Rejections are only audited; they never create negative training.
    Every write drops the matcher's cached training snapshot of the org.
    """

    def __init__(
        self,
        store: TrainingStore,
        matcher: HybridMatcher,
        settings: Optional[Settings] = None,
    ):
        """Initialize sink.

        Args:
            store: Training store the examples and aliases are written to
            matcher: Matcher used to validate entries and recover scores
            settings: Feedback settings
        """
        self.store = store
        self.matcher = matcher
        self.settings = settings or get_settings()

    def record_decision(
        self,
        org_id: UUID,
        query_text: Optional[str],
        entry_id: str,
        decision: Union[MatchDecision, str],
        reviewer_id: Optional[UUID] = None,
        scores: Optional[ReportedScores] = None,
        query_embedding=None,
    ) -> Optional[TrainingRecord]:
        """Record a reviewer decision on a proposed match.

        Args:
            org_id: Organization scope
            query_text: Raw query text the reviewer saw
            entry_id: Catalog entry the decision is about
            decision: approved or rejected
            reviewer_id: Reviewer identifier
            scores: Originating candidate scores; recovered via
                ``HybridMatcher.explain`` when omitted
            query_embedding: Query embedding, used only when recovering scores

        An approval is audited after its training example is stored; when
        the store write fails no decision event is recorded.

        Returns:
            The created or refreshed TrainingRecord on approval, else None

        Raises:
            UnknownCatalogEntryError: If entry_id is not in the org's catalog
            DependencyUnavailableError: If the training store cannot be written
        """
        decision = MatchDecision(decision)
        normalized_query = normalize(query_text)
        if not normalized_query:
            logger.warning(f"Ignoring {decision.value} decision with blank query for entry {entry_id}")
            return None

        if scores is not None:
            entry = self.matcher.catalog.get_snapshot(org_id).get(entry_id)
            if entry is None:
                raise UnknownCatalogEntryError(f"Catalog entry {entry_id} not found for org {org_id}")
            candidate = scores.to_candidate(entry.item)
        else:
            candidate = self.matcher.explain(query_text, org_id, entry_id, query_embedding)

        if decision == MatchDecision.REJECTED:
            self._audit(org_id, query_text, normalized_query, entry_id, decision, reviewer_id, candidate)
            logger.info(f"Recorded rejection of entry {entry_id} for org {org_id}")
            return None

        # Approvals are audited only once the example is stored
        final_score = clamp01(candidate.final_score)
        record = self.store.upsert_training_example(
            org_id,
            TrainingExampleUpsert(
                normalized_text=normalized_query,
                source_text=query_text.strip(),
                catalog_entry_id=entry_id,
                quality=MatchQuality.for_score(final_score),
                confidence=final_score,
                approved_by=reviewer_id,
                approved_at=datetime.now(timezone.utc),
                trigram_score=candidate.trigram_score,
                fuzzy_score=candidate.fuzzy_score,
                alias_score=candidate.alias_score,
                vector_score=candidate.vector_score,
                final_score=final_score,
            ),
        )
        self.matcher.corpus.invalidate(org_id)
        self._audit(org_id, query_text, normalized_query, entry_id, decision, reviewer_id, candidate)

        alias_name = query_text.strip()
        if self.settings.FEEDBACK_CREATE_ALIASES and len(alias_name) >= self.settings.ALIAS_MIN_NAME_LENGTH:
            self.store.upsert_alias(
                org_id,
                catalog_entry_id=entry_id,
                competitor_name=alias_name,
                confidence=min(final_score, 1.0),
                created_by=reviewer_id,
            )
            self.matcher.corpus.invalidate(org_id)

        logger.info(
            f"Recorded approval of entry {entry_id} for org {org_id} "
            f"(quality={record.quality.value}, confidence={record.confidence:.2f})"
        )
        return record

    def _audit(self, org_id, query_text, normalized_query, entry_id, decision, reviewer_id, candidate) -> None:
        self.store.record_decision_event(
            org_id,
            query_text=query_text,
            normalized_query=normalized_query,
            catalog_entry_id=entry_id,
            decision=decision,
            reviewer_id=reviewer_id,
            candidate=candidate,
        )
        feedback_decisions_total.labels(decision=decision.value).inc()

    def add_alias(
        self,
        org_id: UUID,
        competitor_name: str,
        entry_id: str,
        confidence: float = 1.0,
        competitor_sku: Optional[str] = None,
        created_by: Optional[UUID] = None,
    ) -> AliasRecord:
        """Create or refresh a competitor alias for a catalog entry.

        Raises:
            UnknownCatalogEntryError: If entry_id is not in the org's catalog
            ValueError: If competitor_name normalizes to nothing
        """
        if entry_id not in self.matcher.catalog.get_snapshot(org_id):
            raise UnknownCatalogEntryError(f"Catalog entry {entry_id} not found for org {org_id}")

        alias = self.store.upsert_alias(
            org_id,
            catalog_entry_id=entry_id,
            competitor_name=competitor_name,
            confidence=confidence,
            competitor_sku=competitor_sku,
            created_by=created_by,
        )
        self.matcher.corpus.invalidate(org_id)
        logger.info(f"Upserted competitor alias '{alias.normalized_name}' -> {entry_id} for org {org_id}")
        return alias
