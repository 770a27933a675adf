"""Matching ports and interfaces for hexagonal architecture.

The engine never talks to a database directly. It reads a catalog snapshot
through ``CatalogProvider`` and training examples / aliases through
``TrainingStore``; ``infrastructure.repositories`` implements both over
SQLAlchemy and the tests implement them in memory.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Iterable, List, Optional, Tuple
from uuid import UUID

if TYPE_CHECKING:
    from .candidates import CatalogSnapshot


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as read back from SQLite) as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class MatchTier(str, Enum):
    """Precedence level that produced a candidate."""
    TRAINING_EXACT = "training_exact"
    TRAINING_HIGH = "training_high"
    ALGORITHMIC = "algorithmic"


class MatchQuality(str, Enum):
    """Human quality label on a training example."""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"

    @classmethod
    def for_score(cls, final_score: float) -> "MatchQuality":
        """Quality band for the final score of an approved match."""
        if final_score >= 0.9:
            return cls.EXCELLENT
        if final_score >= 0.7:
            return cls.GOOD
        return cls.FAIR


# Only these labels feed the training tiers
QUALIFYING_QUALITIES: Tuple[MatchQuality, ...] = (MatchQuality.EXCELLENT, MatchQuality.GOOD)


class MatchDecision(str, Enum):
    """Reviewer decision on a proposed match."""
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class CatalogItem:
    """Read-only view of one catalog entry.

    Attributes:
        id: Catalog entry identifier
        sku: Internal SKU
        name: Display name
        manufacturer: Manufacturer name (may be empty)
        category: Category label (may be empty)
        embedding: Precomputed embedding vector, if the ingestion pipeline attached one
    """
    id: str
    sku: str
    name: str
    manufacturer: Optional[str] = None
    category: Optional[str] = None
    embedding: Optional[Tuple[float, ...]] = None


@dataclass(frozen=True)
class TrainingRecord:
    """Human-approved (source text, catalog entry) pair.

    Attributes:
        id: Example identifier
        normalized_text: Normalized source text (identity with catalog_entry_id)
        catalog_entry_id: Approved catalog entry
        quality: Human quality label
        confidence: Confidence in [0, 1]
        weight: Manual weight multiplier (1.0 = neutral)
        approved_at: Approval time (timezone-aware)
        source_text: Raw text as first seen
        times_referenced: How often this example contributed to a training boost
        last_referenced_at: Last time it contributed
        trigram_score/fuzzy_score/alias_score/vector_score/final_score:
            Scores of the originating match at approval time
    """
    id: UUID
    normalized_text: str
    catalog_entry_id: str
    quality: MatchQuality
    confidence: float
    weight: float
    approved_at: datetime
    source_text: Optional[str] = None
    times_referenced: int = 0
    last_referenced_at: Optional[datetime] = None
    trigram_score: Optional[float] = None
    fuzzy_score: Optional[float] = None
    alias_score: Optional[float] = None
    vector_score: Optional[float] = None
    final_score: Optional[float] = None


@dataclass(frozen=True)
class AliasRecord:
    """Learned literal mapping from a competitor name/SKU to a catalog entry."""
    id: UUID
    catalog_entry_id: str
    competitor_name: str
    normalized_name: str
    confidence: float
    competitor_sku: str = ""
    normalized_sku: str = ""


@dataclass
class TrainingMatch:
    """A catalog entry backed by similar approved training examples.

    Attributes:
        entry: Catalog entry the examples point at
        training_similarity: Best raw similarity between query and an example
        trigram_similarity: Trigram part of the best example's similarity
        fuzzy_similarity: Fuzzy part of the best example's similarity
        learned_score: Decayed, weighted, diminishing-returns boost (capped)
        training_weight: Weight multiplier of the best example
        approved_at: Approval time of the best example
        support_count: Number of qualifying examples pointing at this entry
        example_ids: Examples that contributed to ``learned_score``
        best_example_text: Normalized text of the best example
    """
    entry: CatalogItem
    training_similarity: float
    trigram_similarity: float
    fuzzy_similarity: float
    learned_score: float
    training_weight: float
    approved_at: datetime
    support_count: int
    example_ids: List[UUID] = field(default_factory=list)
    best_example_text: str = ""


@dataclass
class MatchCandidate:
    """Single catalog match candidate with per-signal and combined scores.

    Attributes:
        entry: Catalog entry
        vector_score: Embedding similarity (0.0 when unavailable)
        trigram_score: Trigram similarity
        fuzzy_score: Fuzzy similarity
        alias_score: Alias similarity
        final_score: Combined confidence (0.0-1.0)
        tier: Tier that produced the candidate
        rationale: Human-readable explanation
        learned_score: Training boost for this entry (informational)
        matched_via: Dominant signal (training, alias, fuzzy, trigram, vector)
    """
    entry: CatalogItem
    vector_score: float
    trigram_score: float
    fuzzy_score: float
    alias_score: float
    final_score: float
    tier: MatchTier
    rationale: str
    learned_score: float = 0.0
    matched_via: str = "trigram"

    @property
    def is_training_match(self) -> bool:
        return self.tier in (MatchTier.TRAINING_EXACT, MatchTier.TRAINING_HIGH)

    def to_dict(self) -> dict:
        """Flat representation used by the HTTP layer and decision audit."""
        return {
            "entry_id": self.entry.id,
            "sku": self.entry.sku,
            "name": self.entry.name,
            "manufacturer": self.entry.manufacturer,
            "category": self.entry.category,
            "vector_score": self.vector_score,
            "trigram_score": self.trigram_score,
            "fuzzy_score": self.fuzzy_score,
            "alias_score": self.alias_score,
            "learned_score": self.learned_score,
            "final_score": self.final_score,
            "tier": self.tier.value,
            "matched_via": self.matched_via,
            "rationale": self.rationale,
            "is_training_match": self.is_training_match,
        }


@dataclass
class TrainingExampleUpsert:
    """Payload for creating or refreshing a training example."""
    normalized_text: str
    source_text: str
    catalog_entry_id: str
    quality: MatchQuality
    confidence: float
    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    trigram_score: Optional[float] = None
    fuzzy_score: Optional[float] = None
    alias_score: Optional[float] = None
    vector_score: Optional[float] = None
    final_score: Optional[float] = None


class CatalogProvider(ABC):
    """Port for read-only catalog snapshots, scoped by tenant."""

    @abstractmethod
    def get_snapshot(self, org_id: UUID) -> "CatalogSnapshot":
        """Return the current catalog snapshot for an organization.

        Raises:
            DependencyUnavailableError: If the catalog cannot be read
        """
        pass


class TrainingStore(ABC):
    """Port for training examples, competitor aliases and decision audit.

    Implementations must make ``upsert_training_example`` and
    ``upsert_alias`` single atomic conditional writes.
    """

    @abstractmethod
    def list_training_examples(
        self,
        org_id: UUID,
        approved_since: datetime,
        qualities: Iterable[MatchQuality] = QUALIFYING_QUALITIES,
    ) -> List[TrainingRecord]:
        """List examples approved at or after ``approved_since`` with the given labels.

        Raises:
            DependencyUnavailableError: If the store cannot be read
        """
        pass

    @abstractmethod
    def list_aliases(self, org_id: UUID) -> List[AliasRecord]:
        """List all competitor aliases of an organization.

        Raises:
            DependencyUnavailableError: If the store cannot be read
        """
        pass

    @abstractmethod
    def touch_examples(self, org_id: UUID, example_ids: Iterable[UUID], referenced_at: datetime) -> int:
        """Increment reference counters and set last-referenced time.

        Returns:
            Number of examples updated
        """
        pass

    @abstractmethod
    def upsert_training_example(self, org_id: UUID, payload: TrainingExampleUpsert) -> TrainingRecord:
        """Create or refresh the example keyed by (normalized text, entry)."""
        pass

    @abstractmethod
    def upsert_alias(
        self,
        org_id: UUID,
        catalog_entry_id: str,
        competitor_name: str,
        confidence: float,
        competitor_sku: Optional[str] = None,
        created_by: Optional[UUID] = None,
    ) -> AliasRecord:
        """Create or refresh the alias keyed by (normalized name, competitor SKU)."""
        pass

    @abstractmethod
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
        """Append one reviewer decision to the audit log."""
        pass


class MatcherError(Exception):
    """Exception raised for matching errors."""
    pass


class DependencyUnavailableError(MatcherError):
    """Catalog or training store could not be read."""
    pass


class UnknownCatalogEntryError(MatcherError):
    """A decision referenced an entry outside the caller's catalog scope."""
    pass
