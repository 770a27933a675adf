"""Tiered hybrid matcher: approved training first, algorithmic scoring last.

Pipeline (strict short-circuit, not a blend):
1. Tier 1: training examples with similarity >= 0.95 -> final score 1.0
2. Tier 2: training examples with similarity in [0.80, 0.95) -> 0.85..0.95
3. Tier 3: candidate generation + trigram / fuzzy / alias / vector scoring

A lower tier is only evaluated when every tier above it came back empty,
so a human-approved mapping is never outranked by algorithmic noise.
"""

import contextvars
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from ..config import Settings, clamp_limit, clamp_threshold, get_settings
from ..observability.metrics import (
    match_candidate_set_size,
    match_resolutions_total,
    match_resolve_duration_seconds,
    match_top_score,
)
from .candidates import AliasIndex, CandidateGenerator, CatalogSnapshot
from .normalizer import normalize
from .ports import (
    CatalogProvider,
    MatchCandidate,
    MatcherError,
    MatchTier,
    TrainingMatch,
    TrainingStore,
    UnknownCatalogEntryError,
)
from .scorer import MatchScorer
from .similarity import clamp01, vector_similarity
from .training_index import TrainingCorpus, TrainingSnapshot
from .training_lookup import TrainingLookup

logger = logging.getLogger(__name__)

EmbeddingInput = Optional[Sequence[float]]


class HybridMatcher:
    """Resolve free-text line items to catalog entries.

    The matcher holds no per-query state; one instance may serve any
    number of concurrent ``resolve`` calls.
    """

    def __init__(
        self,
        catalog: CatalogProvider,
        store: TrainingStore,
        settings: Optional[Settings] = None,
        corpus: Optional[TrainingCorpus] = None,
    ):
        """Initialize hybrid matcher.

        Args:
            catalog: Catalog snapshot provider
            store: Training example / alias store
            settings: Matching settings (defaults to ``get_settings()``)
            corpus: Shared training snapshot cache; a private one is
                created when omitted
        """
        self.catalog = catalog
        self.store = store
        self.settings = settings or get_settings()
        self.corpus = corpus or TrainingCorpus(store, self.settings)
        self.scorer = MatchScorer(self.settings.MATCH_WEIGHTS)
        self.generator = CandidateGenerator(self.settings)
        self.training = TrainingLookup(store, self.settings, self.corpus)

    def resolve(
        self,
        query_text: Optional[str],
        org_id: UUID,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        query_embedding: EmbeddingInput = None,
        now: Optional[datetime] = None,
    ) -> List[MatchCandidate]:
        """Resolve one query to ranked catalog candidates.

        Args:
            query_text: Raw line-item text (``None`` and blank allowed)
            org_id: Organization scope
            limit: Max results, clamped to [MATCH_MIN_LIMIT, MATCH_MAX_LIMIT]
            threshold: Tier-3 minimum final score, clamped to [0, 1]
            query_embedding: Precomputed query embedding, if any
            now: Reference time for training recency (defaults to now)

        Returns:
            Candidates ordered by final score desc. Empty when the query
            normalizes to nothing or nothing is similar enough.

        Raises:
            DependencyUnavailableError: If catalog or training store cannot be read
            MatcherError: If matching fails for any other reason
        """
        normalized_query = normalize(query_text)
        if not normalized_query:
            logger.debug("Empty normalized query, returning no candidates")
            match_resolutions_total.labels(tier="empty").inc()
            return []

        limit = clamp_limit(limit, self.settings)
        threshold = clamp_threshold(threshold, self.settings)
        started = time.perf_counter()

        try:
            snapshot = self.catalog.get_snapshot(org_id)
            tier, results = self._rank(
                normalized_query, org_id, snapshot, threshold, query_embedding, now, record=True
            )
            results = results[:limit]
        except MatcherError:
            raise
        except Exception as e:
            logger.exception(f"Matching failed for org {org_id}")
            raise MatcherError(f"Matching failed: {str(e)}") from e
        finally:
            match_resolve_duration_seconds.observe(time.perf_counter() - started)

        match_resolutions_total.labels(tier=tier.value if results else "empty").inc()
        if results:
            match_top_score.observe(results[0].final_score)
        logger.info(
            f"Resolved query for org {org_id}: tier={tier.value} results={len(results)}"
        )
        return results

    def resolve_batch(
        self,
        queries: Sequence[Optional[str]],
        org_id: UUID,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        query_embeddings: Optional[Sequence[EmbeddingInput]] = None,
    ) -> List[List[MatchCandidate]]:
        """Resolve independent queries in parallel.

        Args:
            queries: Raw query texts
            org_id: Organization scope shared by all queries
            limit: Max results per query
            threshold: Tier-3 minimum final score per query
            query_embeddings: Optional embeddings aligned with ``queries``

        Returns:
            One result list per query (same order as inputs)

        Raises:
            DependencyUnavailableError: If any query hits an unreadable store
        """
        if not queries:
            return []
        if query_embeddings is not None and len(query_embeddings) != len(queries):
            raise ValueError("query_embeddings must align with queries")
        embeddings = list(query_embeddings) if query_embeddings is not None else [None] * len(queries)

        workers = min(self.settings.BATCH_MAX_WORKERS, len(queries))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="partmatch-resolve") as pool:
            futures = [
                # Each task gets its own context copy (request id for logging)
                pool.submit(
                    contextvars.copy_context().run,
                    self.resolve, query, org_id, limit, threshold, embedding,
                )
                for query, embedding in zip(queries, embeddings)
            ]
            return [future.result() for future in futures]

    def explain(
        self,
        query_text: Optional[str],
        org_id: UUID,
        entry_id: str,
        query_embedding: EmbeddingInput = None,
    ) -> MatchCandidate:
        """Scores a given entry would receive for a query.

        Ranks the query like ``resolve`` with a zero threshold and returns
        the entry's candidate; when the entry is not among those results,
        scores it directly with the algorithmic scorer. Unlike ``resolve``
        this bumps no reference counters and records no resolution metrics.

        Raises:
            UnknownCatalogEntryError: If the entry is not in the org's catalog
            DependencyUnavailableError: If catalog or training store cannot be read
        """
        snapshot = self.catalog.get_snapshot(org_id)
        entry = snapshot.get(entry_id)
        if entry is None:
            raise UnknownCatalogEntryError(f"Catalog entry {entry_id} not found for org {org_id}")

        normalized_query = normalize(query_text)
        training = self.corpus.get_snapshot(org_id, datetime.now(timezone.utc))
        if normalized_query:
            _, results = self._rank(
                normalized_query, org_id, snapshot, 0.0, query_embedding, training=training, record=False
            )
            for candidate in results:
                if candidate.entry.id == entry_id:
                    return candidate

        return self.scorer.score(
            normalized_query,
            entry,
            training.aliases.for_entry(entry_id),
            query_embedding,
        )

    def _rank(
        self,
        normalized_query: str,
        org_id: UUID,
        snapshot: CatalogSnapshot,
        threshold: float,
        query_embedding: EmbeddingInput,
        now: Optional[datetime] = None,
        training: Optional[TrainingSnapshot] = None,
        record: bool = True,
    ) -> Tuple[MatchTier, List[MatchCandidate]]:
        """Answering tier and its full, unlimited candidate list.

        With ``record`` off, no reference counter is bumped and no
        candidate-set metric is observed.
        """
        now = now or datetime.now(timezone.utc)
        if training is None:
            training = self.corpus.get_snapshot(org_id, now)
        matches = self.training.lookup(
            normalized_query, org_id, snapshot, now=now, training=training, touch=record
        )

        exact = [m for m in matches if m.training_similarity >= self.settings.TRAINING_EXACT_THRESHOLD]
        if exact:
            return MatchTier.TRAINING_EXACT, self._training_exact(exact, query_embedding)

        high = [m for m in matches if self.settings.TRAINING_HIGH_THRESHOLD <= m.training_similarity]
        if high:
            return MatchTier.TRAINING_HIGH, self._training_high(high, query_embedding)

        learned = {m.entry.id: m.learned_score for m in matches}
        return MatchTier.ALGORITHMIC, self._algorithmic(
            normalized_query, snapshot, training.aliases, threshold, query_embedding, learned, record
        )

    def _training_exact(
        self,
        matches: List[TrainingMatch],
        query_embedding: EmbeddingInput,
    ) -> List[MatchCandidate]:
        ordered = sorted(
            matches,
            key=lambda m: (-m.training_weight, -m.approved_at.timestamp(), m.entry.id),
        )
        return [
            self._training_candidate(m, 1.0, MatchTier.TRAINING_EXACT, query_embedding)
            for m in ordered
        ]

    def _training_high(
        self,
        matches: List[TrainingMatch],
        query_embedding: EmbeddingInput,
    ) -> List[MatchCandidate]:
        base = self.settings.TRAINING_HIGH_BASE_SCORE
        floor = self.settings.TRAINING_HIGH_THRESHOLD
        scaling = self.settings.tier_high_scaling

        ordered = sorted(matches, key=lambda m: (-m.training_similarity, m.entry.id))
        return [
            self._training_candidate(
                m,
                clamp01(base + (m.training_similarity - floor) * scaling),
                MatchTier.TRAINING_HIGH,
                query_embedding,
            )
            for m in ordered
        ]

    def _training_candidate(
        self,
        match: TrainingMatch,
        final_score: float,
        tier: MatchTier,
        query_embedding: EmbeddingInput,
    ) -> MatchCandidate:
        vector = vector_similarity(query_embedding, match.entry.embedding)
        label = "Exact" if tier == MatchTier.TRAINING_EXACT else "High-confidence"
        rationale = (
            f"{label} training match: approved example '{match.best_example_text}' "
            f"(similarity {match.training_similarity:.2f}, "
            f"{match.support_count} supporting example{'s' if match.support_count != 1 else ''}, "
            f"learned score {match.learned_score:.2f})"
        )
        return MatchCandidate(
            entry=match.entry,
            vector_score=vector if vector is not None else 0.0,
            trigram_score=match.trigram_similarity,
            fuzzy_score=match.fuzzy_similarity,
            alias_score=0.0,
            final_score=final_score,
            tier=tier,
            rationale=rationale,
            learned_score=match.learned_score,
            matched_via="training",
        )

    def _algorithmic(
        self,
        normalized_query: str,
        snapshot: CatalogSnapshot,
        aliases: AliasIndex,
        threshold: float,
        query_embedding: EmbeddingInput,
        learned: Dict[str, float],
        record: bool = True,
    ) -> List[MatchCandidate]:
        entries = self.generator.generate(normalized_query, snapshot, aliases, query_embedding, threshold)
        if record:
            match_candidate_set_size.observe(len(entries))

        scored = []
        for entry in entries:
            candidate = self.scorer.score(
                normalized_query,
                entry,
                aliases.for_entry(entry.id),
                query_embedding,
                learned.get(entry.id, 0.0),
            )
            if candidate.final_score > 0.0 and candidate.final_score >= threshold:
                scored.append(candidate)

        scored.sort(key=lambda c: (-c.final_score, -c.trigram_score, c.entry.id))
        return scored
