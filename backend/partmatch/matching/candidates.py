"""Catalog snapshot index and tier-3 candidate generation.

A ``CatalogSnapshot`` is built once per catalog load and shared read-only
by every query. It keeps an inverted trigram index and a length index
over the normalized name, SKU and manufacturer of each entry, plus a
row-normalized embedding matrix for nearest-neighbour lookups, so
candidate generation touches only entries that could still reach the
caller's threshold.
"""

import bisect
import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

import numpy as np

from ..config import Settings, get_settings
from .normalizer import normalize
from .ports import AliasRecord, CatalogItem
from .similarity import (
    combine_signals,
    fuzzy_upper_bound,
    length_ratio,
    min_length_ratio,
    symbol_word_share,
    trigrams,
)

logger = logging.getLogger(__name__)

# (entry id, field slot) -> trigram count
_FieldKey = Tuple[str, int]

# Float slack when comparing a score ceiling with the threshold
_EPSILON = 1e-9


@dataclass(frozen=True)
class IndexedEntry:
    """Catalog entry with its normalized text fields precomputed."""
    item: CatalogItem
    norm_name: str
    norm_sku: str
    norm_manufacturer: str

    @property
    def id(self) -> str:
        return self.item.id

    @property
    def text_fields(self) -> Tuple[str, ...]:
        return tuple(f for f in (self.norm_name, self.norm_sku, self.norm_manufacturer) if f)


class TrigramIndex:
    """Inverted trigram index over (owner id, field slot) keys."""

    def __init__(self):
        self._postings: Dict[str, Set[_FieldKey]] = defaultdict(set)
        self._sizes: Dict[_FieldKey, int] = {}

    def add(self, owner_id: str, slot: int, text: str) -> None:
        grams = trigrams(text)
        if not grams:
            return
        key = (owner_id, slot)
        self._sizes[key] = len(grams)
        for gram in grams:
            self._postings[gram].add(key)

    def best_similarity(self, query: str) -> Dict[str, float]:
        """Best trigram set similarity per owner, for owners sharing any trigram."""
        query_grams = trigrams(query)
        if not query_grams:
            return {}
        shared: Dict[_FieldKey, int] = defaultdict(int)
        for gram in query_grams:
            for key in self._postings.get(gram, ()):
                shared[key] += 1

        best: Dict[str, float] = {}
        q = len(query_grams)
        for key, count in shared.items():
            score = count / (q + self._sizes[key] - count)
            owner = key[0]
            if score > best.get(owner, 0.0):
                best[owner] = score
        return best


class LengthIndex:
    """Owners by text length, for matches that share no trigram."""

    def __init__(self, texts: Iterable[Tuple[str, str]]):
        pairs = sorted((len(text), owner_id) for owner_id, text in texts if text)
        self._lengths = [length for length, _ in pairs]
        self._owners = [owner_id for _, owner_id in pairs]

    def near(self, length: int, min_ratio: float) -> Set[str]:
        """Owners with a text whose ``length_ratio`` to ``length`` is at least ``min_ratio``."""
        if length <= 0 or min_ratio > 1.0:
            return set()
        if min_ratio <= 0.0:
            return set(self._owners)
        low = math.ceil(length * min_ratio - _EPSILON)
        high = math.floor(length / min_ratio + _EPSILON)
        start = bisect.bisect_left(self._lengths, low)
        stop = bisect.bisect_right(self._lengths, high)
        return set(self._owners[start:stop])


class CatalogSnapshot:
    """Immutable, indexed view of one organization's catalog."""

    def __init__(self, items: Iterable[CatalogItem], built_at: Optional[datetime] = None):
        self.built_at = built_at or datetime.now(timezone.utc)
        self._entries: Dict[str, IndexedEntry] = {}
        self._index = TrigramIndex()

        for item in sorted(items, key=lambda i: i.id):
            entry = IndexedEntry(
                item=item,
                norm_name=normalize(item.name),
                norm_sku=normalize(item.sku),
                norm_manufacturer=normalize(item.manufacturer),
            )
            self._entries[item.id] = entry
            for slot, text in enumerate((entry.norm_name, entry.norm_sku, entry.norm_manufacturer)):
                self._index.add(item.id, slot, text)

        self._lengths = LengthIndex(
            (entry.id, text) for entry in self._entries.values() for text in entry.text_fields
        )
        self._vector_ids, self._vector_matrix = self._build_vector_matrix()

    def _build_vector_matrix(self) -> Tuple[List[str], Optional[np.ndarray]]:
        with_vectors = [e for e in self._entries.values() if e.item.embedding]
        if not with_vectors:
            return [], None
        # Entries whose dimension differs from the majority cannot be compared
        dims: Dict[int, int] = defaultdict(int)
        for entry in with_vectors:
            dims[len(entry.item.embedding)] += 1
        dim = max(dims.items(), key=lambda kv: (kv[1], kv[0]))[0]

        ids: List[str] = []
        rows: List[np.ndarray] = []
        for entry in with_vectors:
            if len(entry.item.embedding) != dim:
                continue
            row = np.asarray(entry.item.embedding, dtype=float)
            norm = np.linalg.norm(row)
            if norm == 0.0 or not np.isfinite(norm):
                continue
            ids.append(entry.id)
            rows.append(row / norm)
        if not rows:
            return [], None
        return ids, np.vstack(rows)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._entries

    def __iter__(self) -> Iterator[IndexedEntry]:
        return iter(self._entries.values())

    def get(self, entry_id: str) -> Optional[IndexedEntry]:
        return self._entries.get(entry_id)

    def trigram_prefilter(self, normalized_query: str) -> Dict[str, float]:
        """Best per-entry trigram similarity, for entries sharing any trigram."""
        return self._index.best_similarity(normalized_query)

    def entries_near_length(self, length: int, min_ratio: float) -> Set[str]:
        """Entries with a text field whose length ratio to ``length`` is at least ``min_ratio``."""
        return self._lengths.near(length, min_ratio)

    @property
    def vector_dimension(self) -> Optional[int]:
        """Dimension of the indexed embeddings, ``None`` when there are none."""
        if self._vector_matrix is None:
            return None
        return self._vector_matrix.shape[1]

    def nearest(self, query_embedding: Sequence[float], k: int) -> List[Tuple[str, float]]:
        """Top-k entries by cosine similarity to ``query_embedding``.

        Returns:
            List of (entry_id, similarity) with similarity > 0, best first.
            Empty when there are no comparable embeddings.
        """
        if self._vector_matrix is None or k <= 0 or query_embedding is None:
            return []
        query = np.asarray(query_embedding, dtype=float)
        if query.ndim != 1 or query.shape[0] != self._vector_matrix.shape[1]:
            return []
        norm = np.linalg.norm(query)
        if norm == 0.0 or not np.isfinite(norm):
            return []
        sims = self._vector_matrix @ (query / norm)
        k = min(k, sims.shape[0])
        top = np.argpartition(-sims, k - 1)[:k]
        ranked = sorted(top, key=lambda i: (-sims[i], self._vector_ids[i]))
        return [(self._vector_ids[i], float(sims[i])) for i in ranked if sims[i] > 0.0]


class AliasIndex:
    """Per-query view of an organization's competitor aliases."""

    def __init__(self, aliases: Iterable[AliasRecord]):
        self._by_entry: Dict[str, List[AliasRecord]] = defaultdict(list)
        self._exact: Dict[str, Set[str]] = defaultdict(set)
        self._index = TrigramIndex()

        for alias in aliases:
            self._by_entry[alias.catalog_entry_id].append(alias)
            for literal in (alias.normalized_name, alias.normalized_sku):
                if literal:
                    self._exact[literal].add(alias.catalog_entry_id)
            # Slot per alias keeps names of different aliases apart
            slot = len(self._by_entry[alias.catalog_entry_id]) - 1
            self._index.add(alias.catalog_entry_id, slot, alias.normalized_name)

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_entry.values())

    def for_entry(self, entry_id: str) -> List[AliasRecord]:
        return self._by_entry.get(entry_id, [])

    def exact_entries(self, normalized_query: str) -> Set[str]:
        """Entries with an alias whose normalized name or SKU equals the query."""
        return set(self._exact.get(normalized_query, ()))

    def trigram_prefilter(self, normalized_query: str) -> Dict[str, float]:
        return self._index.best_similarity(normalized_query)


class CandidateGenerator:
    """Tier-3 candidate set for a query, without false negatives.

    Every candidate's final score is bounded from above by what the
    indexes can tell without scoring it: its trigram similarity (exact),
    an alias ceiling, a vector ceiling from the nearest neighbours, and a
    fuzzy ceiling from the field lengths. An entry is a candidate when
    that ceiling reaches the threshold. Entries sharing no trigram, alias
    or neighbourhood with the query are only looked up through the length
    index, which holds every field length close enough to the query's for
    fuzzy similarity alone to reach the threshold.

    Catalogs no larger than ``MATCH_MAX_CANDIDATES`` are returned whole.
    Above it, candidates whose ceiling reaches the threshold are all
    kept, even when there are more of them than the cap.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def generate(
        self,
        normalized_query: str,
        snapshot: CatalogSnapshot,
        aliases: Optional[AliasIndex] = None,
        query_embedding: Optional[Sequence[float]] = None,
        threshold: Optional[float] = None,
    ) -> List[IndexedEntry]:
        """Produce the candidate entries for a normalized query.

        Args:
            normalized_query: Query after ``normalize``
            snapshot: Catalog snapshot for the query's organization
            aliases: Alias index for the same organization
            query_embedding: Optional precomputed query embedding
            threshold: Minimum final score the caller keeps
                (defaults to ``MATCH_DEFAULT_THRESHOLD``)

        Returns:
            Candidate entries, highest score ceiling first
        """
        if not normalized_query or not len(snapshot):
            return []
        if threshold is None:
            threshold = self.settings.MATCH_DEFAULT_THRESHOLD

        cap = self.settings.MATCH_MAX_CANDIDATES
        if len(snapshot) <= cap or threshold <= 0.0:
            return list(snapshot)

        trigram = snapshot.trigram_prefilter(normalized_query)

        alias_ceiling: Dict[str, float] = {}
        if aliases is not None:
            alias_ceiling = aliases.trigram_prefilter(normalized_query)
            for entry_id in aliases.exact_entries(normalized_query):
                alias_ceiling[entry_id] = 1.0

        neighbours: Dict[str, float] = {}
        vector_rest = None
        if query_embedding is not None:
            top_k = self.settings.MATCH_VECTOR_TOP_K
            nearest = snapshot.nearest(query_embedding, top_k)
            neighbours = dict(nearest)
            vector_rest = self._vector_ceiling(snapshot, query_embedding, nearest, top_k)

        symbol_share = symbol_word_share(normalized_query)
        min_ratio = min_length_ratio(self._fuzzy_needed(threshold, vector_rest), symbol_share)
        if min_ratio <= 0.0:
            return list(snapshot)

        reachable = set(trigram) | set(alias_ceiling) | set(neighbours)
        reachable |= snapshot.entries_near_length(len(normalized_query), min_ratio)

        ceilings: Dict[str, float] = {}
        for entry_id in reachable:
            entry = snapshot.get(entry_id)
            if entry is None:
                continue
            tri = trigram.get(entry_id, 0.0)
            word_share = 1.0 if tri > 0.0 else symbol_share
            fuzzy = max(
                (fuzzy_upper_bound(length_ratio(len(normalized_query), len(text)), word_share)
                 for text in entry.text_fields),
                default=0.0,
            )
            ceiling = self._score_ceiling(
                tri, fuzzy, alias_ceiling.get(entry_id, 0.0), neighbours.get(entry_id, vector_rest)
            )
            if ceiling > 0.0 and ceiling >= threshold - _EPSILON:
                ceilings[entry_id] = ceiling

        ranked = sorted(ceilings, key=lambda entry_id: (-ceilings[entry_id], entry_id))
        if len(ranked) > cap:
            logger.debug(f"{len(ranked)} entries can reach threshold {threshold}, above the cap of {cap}")
        return [snapshot.get(entry_id) for entry_id in ranked]

    def _score_ceiling(self, trigram: float, fuzzy: float, alias: float, vector: Optional[float]) -> float:
        weights = self.settings.MATCH_WEIGHTS.as_dict()
        signals = {"trigram": trigram, "fuzzy": fuzzy, "alias": alias, "vector": None}
        ceiling = combine_signals(weights, signals)
        if vector is not None:
            # The entry may lack an embedding, so both forms are possible
            ceiling = max(ceiling, combine_signals(weights, {**signals, "vector": vector}))
        return ceiling

    def _fuzzy_needed(self, threshold: float, vector_rest: Optional[float]) -> float:
        """Fuzzy similarity an entry needs when fuzzy (and vector) are its only signals."""
        weights = self.settings.MATCH_WEIGHTS.as_dict()
        total = sum(weights.values())
        if weights["fuzzy"] <= 0.0:
            if vector_rest is not None and weights["vector"] * vector_rest >= threshold * total:
                return 0.0
            return math.inf
        needed = threshold * (total - weights["vector"]) / weights["fuzzy"]
        if vector_rest is not None:
            needed = min(needed, (threshold * total - weights["vector"] * vector_rest) / weights["fuzzy"])
        return needed

    @staticmethod
    def _vector_ceiling(
        snapshot: CatalogSnapshot,
        query_embedding: Sequence[float],
        nearest: List[Tuple[str, float]],
        top_k: int,
    ) -> Optional[float]:
        """Highest vector similarity of an entry outside ``nearest``."""
        dimension = snapshot.vector_dimension
        if dimension is None:
            return None
        if dimension != len(query_embedding):
            return 1.0
        if top_k > 0 and len(nearest) < top_k:
            return 0.0
        return nearest[-1][1] if nearest else 1.0
