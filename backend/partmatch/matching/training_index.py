"""Indexed training corpus, cached per organization.

A ``TrainingSnapshot`` holds one organization's qualifying training
examples and competitor aliases, indexed the same way as the catalog:
an inverted trigram index over example texts and a length index for
examples that share no trigram with a query. ``TrainingCorpus`` caches
one snapshot per organization and rebuilds it after a TTL or after
``invalidate``, which the feedback sink and the CSV import call after
every write.
"""

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from ..config import Settings, get_settings
from .candidates import AliasIndex, LengthIndex, TrigramIndex
from .ports import QUALIFYING_QUALITIES, AliasRecord, TrainingRecord, TrainingStore, as_utc
from .similarity import fuzzy_upper_bound, length_ratio, min_length_ratio, symbol_word_share

logger = logging.getLogger(__name__)


class TrainingSnapshot:
    """Immutable, indexed view of one organization's training corpus."""

    def __init__(
        self,
        examples: Iterable[TrainingRecord],
        aliases: Iterable[AliasRecord] = (),
        approved_since: Optional[datetime] = None,
    ):
        self.approved_since = as_utc(approved_since)
        self.examples: List[TrainingRecord] = [
            e for e in examples if e.quality in QUALIFYING_QUALITIES and e.normalized_text
        ]
        self.aliases = AliasIndex(aliases)

        self._index = TrigramIndex()
        for position, example in enumerate(self.examples):
            self._index.add(str(position), 0, example.normalized_text)
        self._lengths = LengthIndex(
            (str(position), example.normalized_text) for position, example in enumerate(self.examples)
        )

    def __len__(self) -> int:
        return len(self.examples)

    def near(self, normalized_query: str, min_similarity: float) -> List[TrainingRecord]:
        """Examples whose text similarity to the query can reach ``min_similarity``.

        Text similarity is ``max(trigram, fuzzy)``. Examples sharing a
        trigram are bounded by their exact trigram similarity and a length
        based fuzzy ceiling; the others can only get there through fuzzy
        similarity, which the length index bounds.
        """
        if not normalized_query or not self.examples:
            return []
        if min_similarity <= 0.0:
            return list(self.examples)

        query_length = len(normalized_query)
        symbol_share = symbol_word_share(normalized_query)
        positions = set(self._lengths.near(query_length, min_length_ratio(min_similarity, symbol_share)))

        for position, trigram in self._index.best_similarity(normalized_query).items():
            text = self.examples[int(position)].normalized_text
            fuzzy = fuzzy_upper_bound(length_ratio(query_length, len(text)), 1.0)
            if max(trigram, fuzzy) >= min_similarity:
                positions.add(position)

        return [self.examples[int(position)] for position in sorted(positions, key=int)]


class TrainingCorpus:
    """Per-organization ``TrainingSnapshot`` cache over a ``TrainingStore``.

    A cached snapshot is reused while it is younger than
    ``TRAINING_SNAPSHOT_TTL_SECONDS`` and covers the requested approval
    window. Writers call ``invalidate`` so new approvals and aliases are
    visible to the next query of this process.
    """

    def __init__(
        self,
        store: TrainingStore,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize corpus cache.

        Args:
            store: Training store the snapshots are read from
            settings: Settings (window length, cache TTL)
            clock: Monotonic clock, injectable for tests
        """
        self.store = store
        self.settings = settings or get_settings()
        self._clock = clock
        self._cache: Dict[UUID, Tuple[float, TrainingSnapshot]] = {}
        self._version = 0
        self._lock = threading.Lock()

    def get_snapshot(self, org_id: UUID, now: datetime) -> TrainingSnapshot:
        """Training snapshot covering examples approved in the window ending at ``now``.

        Raises:
            DependencyUnavailableError: If examples or aliases cannot be read
        """
        approved_since = as_utc(now) - timedelta(days=self.settings.TRAINING_WINDOW_DAYS)
        ttl = self.settings.TRAINING_SNAPSHOT_TTL_SECONDS
        loaded_at = self._clock()

        with self._lock:
            cached = self._cache.get(org_id)
            version = self._version
        if cached and ttl > 0 and loaded_at - cached[0] < ttl and cached[1].approved_since <= approved_since:
            return cached[1]

        snapshot = TrainingSnapshot(
            self.store.list_training_examples(org_id, approved_since=approved_since, qualities=QUALIFYING_QUALITIES),
            self.store.list_aliases(org_id),
            approved_since=approved_since,
        )
        with self._lock:
            # An invalidate during the load means the snapshot may be stale
            if version == self._version:
                self._cache[org_id] = (loaded_at, snapshot)
        logger.debug(
            f"Built training snapshot for org {org_id}: {len(snapshot)} examples, {len(snapshot.aliases)} aliases"
        )
        return snapshot

    def invalidate(self, org_id: Optional[UUID] = None) -> None:
        """Drop the cached snapshot of one org, or of every org."""
        with self._lock:
            self._version += 1
            if org_id is None:
                self._cache.clear()
            else:
                self._cache.pop(org_id, None)

    @property
    def cached_org_count(self) -> int:
        with self._lock:
            return len(self._cache)
