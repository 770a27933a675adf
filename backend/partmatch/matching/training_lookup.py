"""Training store lookup.

Finds catalog entries whose approved training examples resemble the query
and computes a learned score per entry:

    weighted_i = similarity_i * decay(age_i) * weight_i
    blended    = 0.7 * max(weighted) + 0.3 * mean(weighted)
    learned    = min(cap, blended * (1 - exp(-n / 5)))

Only ``excellent``/``good`` examples approved inside the rolling window
participate. Examples older than the decay start lose weight linearly and
reach zero at the decay end. The most similar example of an entry decides
its tier; the learned score blends at most ``TRAINING_MAX_EXAMPLES_PER_ENTRY``
of its most trusted examples.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from ..config import Settings, get_settings
from ..observability.metrics import training_references_total
from .candidates import CatalogSnapshot
from .ports import (
    QUALIFYING_QUALITIES,
    DependencyUnavailableError,
    TrainingMatch,
    TrainingRecord,
    TrainingStore,
    as_utc,
)
from .similarity import clamp01, fuzzy_similarity, trigram_similarity
from .training_index import TrainingCorpus, TrainingSnapshot

logger = logging.getLogger(__name__)

BEST_SHARE = 0.7
MEAN_SHARE = 0.3
SUPPORT_SATURATION = 5.0


@dataclass
class _ScoredExample:
    record: TrainingRecord
    similarity: float
    trigram: float
    fuzzy: float
    weighted: float


class TrainingLookup:
    """Score approved training examples against a normalized query."""

    def __init__(
        self,
        store: TrainingStore,
        settings: Optional[Settings] = None,
        corpus: Optional[TrainingCorpus] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.corpus = corpus or TrainingCorpus(store, self.settings)

    def window_start(self, now: datetime) -> datetime:
        return now - timedelta(days=self.settings.TRAINING_WINDOW_DAYS)

    def lookup(
        self,
        normalized_query: str,
        org_id: UUID,
        snapshot: CatalogSnapshot,
        now: Optional[datetime] = None,
        training: Optional[TrainingSnapshot] = None,
        touch: bool = True,
    ) -> List[TrainingMatch]:
        """Training matches for a query within one organization.

        Reference counters of every example that contributed to a non-zero
        learned score are bumped as a side effect unless ``touch`` is off.
        A failed bump is logged and does not fail the lookup.

        Args:
            normalized_query: Normalized query text
            org_id: Organization scope
            snapshot: Catalog snapshot; examples pointing outside it are ignored
            now: Reference time (defaults to current UTC time)
            training: Training snapshot of the org (read from the corpus when omitted)
            touch: Whether to bump reference counters

        Returns:
            Matches sorted by training similarity desc, then entry id

        Raises:
            DependencyUnavailableError: If training examples cannot be read
        """
        if not normalized_query:
            return []
        now = now or datetime.now(timezone.utc)
        if training is None:
            training = self.corpus.get_snapshot(org_id, now)

        examples = training.near(normalized_query, self.settings.TRAINING_MIN_SIMILARITY)
        matches = self.rank(normalized_query, examples, snapshot, now)

        referenced = [example_id for match in matches for example_id in match.example_ids]
        if touch and referenced:
            try:
                self.store.touch_examples(org_id, referenced, now)
                training_references_total.inc(len(referenced))
            except DependencyUnavailableError as e:
                logger.warning(f"Failed to update training reference counters for org {org_id}: {e}")

        return matches

    def rank(
        self,
        normalized_query: str,
        examples: Iterable[TrainingRecord],
        snapshot: CatalogSnapshot,
        now: datetime,
    ) -> List[TrainingMatch]:
        """Pure scoring step of ``lookup`` (no store access)."""
        if not normalized_query:
            return []

        cutoff = self.window_start(now)
        grouped: Dict[str, List[_ScoredExample]] = defaultdict(list)

        for record in examples:
            if record.quality not in QUALIFYING_QUALITIES:
                continue
            approved_at = as_utc(record.approved_at)
            if approved_at is None or approved_at < cutoff:
                continue
            entry = snapshot.get(record.catalog_entry_id)
            if entry is None:
                continue

            trigram = trigram_similarity(normalized_query, record.normalized_text)
            fuzzy = fuzzy_similarity(normalized_query, record.normalized_text)
            similarity = max(trigram, fuzzy)
            if similarity < self.settings.TRAINING_MIN_SIMILARITY:
                continue

            weighted = similarity * self.decay(approved_at, now) * max(record.weight, 0.0)
            grouped[record.catalog_entry_id].append(
                _ScoredExample(record, similarity, trigram, fuzzy, weighted)
            )

        matches = [
            self._build_match(snapshot.get(entry_id).item, scored)
            for entry_id, scored in grouped.items()
        ]
        matches.sort(key=lambda m: (-m.training_similarity, m.entry.id))
        return matches

    def decay(self, approved_at: datetime, now: datetime) -> float:
        """Linear age decay: 1.0 up to the decay start, 0.0 at the decay end."""
        age_days = (now - as_utc(approved_at)).total_seconds() / 86400.0
        start = self.settings.TRAINING_DECAY_START_DAYS
        end = self.settings.TRAINING_DECAY_END_DAYS
        if age_days <= start:
            return 1.0
        if age_days >= end:
            return 0.0
        return 1.0 - (age_days - start) / (end - start)

    def learned_score(self, weighted: List[float]) -> float:
        if not weighted:
            return 0.0
        best = max(weighted)
        mean = sum(weighted) / len(weighted)
        support = 1.0 - math.exp(-len(weighted) / SUPPORT_SATURATION)
        blended = (BEST_SHARE * best + MEAN_SHARE * mean) * support
        return clamp01(min(self.settings.TRAINING_BOOST_CAP, blended))

    def _build_match(self, entry, scored: List[_ScoredExample]) -> TrainingMatch:
        # Tier selection looks at every example; only the learned score is capped
        best = max(
            scored,
            key=lambda s: (s.similarity, s.record.weight, as_utc(s.record.approved_at), s.record.confidence),
        )

        # Most trusted, then most recent examples first
        scored.sort(key=lambda s: (-s.record.confidence, -as_utc(s.record.approved_at).timestamp(), str(s.record.id)))
        kept = scored[: self.settings.TRAINING_MAX_EXAMPLES_PER_ENTRY]

        learned = self.learned_score([s.weighted for s in kept])
        contributing = [s.record.id for s in kept if s.weighted > 0.0] if learned > 0.0 else []

        return TrainingMatch(
            entry=entry,
            training_similarity=best.similarity,
            trigram_similarity=best.trigram,
            fuzzy_similarity=best.fuzzy,
            learned_score=learned,
            training_weight=best.record.weight,
            approved_at=as_utc(best.record.approved_at),
            support_count=len(scored),
            example_ids=contributing,
            best_example_text=best.record.normalized_text,
        )
