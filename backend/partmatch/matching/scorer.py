"""Algorithmic (tier 3) match scoring.

Combines four signals into one confidence:

- S_tri = max trigram similarity over name, SKU, manufacturer
- S_fuz = max fuzzy similarity over the same fields
- S_ali = 1.0 on a literal alias hit, else max(alias.confidence * S_tri(alias))
- S_vec = cosine similarity of embeddings, when both sides have one

final = sum(w_i * S_i) / sum(w_i) over the signals that could be computed,
so a missing embedding shifts its weight onto the text signals instead of
dragging the score down.
"""

from typing import Dict, Optional, Sequence

from ..config import MatchingWeights
from .candidates import IndexedEntry
from .ports import AliasRecord, MatchCandidate, MatchTier
from .similarity import (
    best_fuzzy_similarity,
    best_trigram_similarity,
    clamp01,
    combine_signals,
    trigram_similarity,
    vector_similarity,
)

# Tie order for the dominant-signal label
_SIGNAL_PRIORITY = ("alias", "fuzzy", "trigram", "vector")


class MatchScorer:
    """Score catalog entries against a normalized query."""

    def __init__(self, weights: Optional[MatchingWeights] = None):
        """Initialize scorer.

        Args:
            weights: Per-signal weights; defaults to ``MatchingWeights()``
        """
        self.weights = weights or MatchingWeights()

    def alias_similarity(self, normalized_query: str, aliases: Sequence[AliasRecord]) -> float:
        """Alias signal for one entry.

        Args:
            normalized_query: Normalized query text
            aliases: Aliases known for the entry

        Returns:
            1.0 when the query equals an alias name or SKU after
            normalization, otherwise the best confidence-weighted trigram
            similarity against alias names (0.0 without aliases)
        """
        if not normalized_query or not aliases:
            return 0.0

        best = 0.0
        for alias in aliases:
            if normalized_query in (alias.normalized_name, alias.normalized_sku):
                return 1.0
            score = clamp01(alias.confidence) * trigram_similarity(normalized_query, alias.normalized_name)
            best = max(best, score)
        return clamp01(best)

    def combine(
        self,
        trigram: float,
        fuzzy: float,
        alias: float,
        vector: Optional[float],
    ) -> float:
        """Weighted sum with proportional redistribution of missing signals."""
        signals: Dict[str, Optional[float]] = {
            "trigram": trigram,
            "fuzzy": fuzzy,
            "alias": alias,
            "vector": vector,
        }
        return combine_signals(self.weights.as_dict(), signals)

    def score(
        self,
        normalized_query: str,
        entry: IndexedEntry,
        aliases: Sequence[AliasRecord] = (),
        query_embedding: Optional[Sequence[float]] = None,
        learned_score: float = 0.0,
    ) -> MatchCandidate:
        """Score one catalog entry.

        Args:
            normalized_query: Normalized query text
            entry: Indexed catalog entry
            aliases: Aliases pointing at this entry
            query_embedding: Optional query embedding
            learned_score: Training boost for this entry, carried for display only

        Returns:
            MatchCandidate with ``tier = algorithmic``
        """
        fields = entry.text_fields
        trigram = best_trigram_similarity(normalized_query, fields)
        fuzzy = best_fuzzy_similarity(normalized_query, fields)
        alias = self.alias_similarity(normalized_query, aliases)
        vector = vector_similarity(query_embedding, entry.item.embedding)

        final = self.combine(trigram, fuzzy, alias, vector)
        matched_via = self._dominant_signal(trigram, fuzzy, alias, vector)

        return MatchCandidate(
            entry=entry.item,
            vector_score=vector if vector is not None else 0.0,
            trigram_score=trigram,
            fuzzy_score=fuzzy,
            alias_score=alias,
            final_score=final,
            tier=MatchTier.ALGORITHMIC,
            rationale=self._rationale(trigram, fuzzy, alias, vector, final, matched_via),
            learned_score=clamp01(learned_score),
            matched_via=matched_via,
        )

    def _dominant_signal(
        self,
        trigram: float,
        fuzzy: float,
        alias: float,
        vector: Optional[float],
    ) -> str:
        if alias >= 1.0:
            return "alias"
        weights = self.weights.as_dict()
        contributions = {
            "trigram": weights["trigram"] * trigram,
            "fuzzy": weights["fuzzy"] * fuzzy,
            "alias": weights["alias"] * alias,
            "vector": weights["vector"] * (vector or 0.0),
        }
        if not any(contributions.values()):
            return "trigram"
        return max(
            _SIGNAL_PRIORITY,
            key=lambda name: (contributions[name], -_SIGNAL_PRIORITY.index(name)),
        )

    def _rationale(
        self,
        trigram: float,
        fuzzy: float,
        alias: float,
        vector: Optional[float],
        final: float,
        matched_via: str,
    ) -> str:
        if alias >= 1.0:
            lead = "Exact competitor alias"
        else:
            lead = f"Algorithmic match via {matched_via}"
        vector_part = f"{vector:.2f}" if vector is not None else "n/a"
        text = (
            f"{lead} (score {final:.2f}: trigram {trigram:.2f}, fuzzy {fuzzy:.2f}, "
            f"alias {alias:.2f}, vector {vector_part})"
        )
        if vector is None:
            text += "; no embedding, vector weight redistributed"
        return text
