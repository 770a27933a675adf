"""Matching module for partmatch.

This module implements tiered hybrid matching of free-text line items
against a product catalog:
- Tier 1/2: approved training examples (exact / high-confidence)
- Tier 3: trigram, fuzzy, competitor alias and embedding similarity
"""

from .ports import (
    CatalogItem,
    CatalogProvider,
    DependencyUnavailableError,
    MatchCandidate,
    MatchDecision,
    MatcherError,
    MatchQuality,
    MatchTier,
    TrainingStore,
    UnknownCatalogEntryError,
)
from .normalizer import normalize
from .candidates import CatalogSnapshot, CandidateGenerator
from .scorer import MatchScorer
from .hybrid_matcher import HybridMatcher

__all__ = [
    "CatalogItem",
    "CatalogProvider",
    "CatalogSnapshot",
    "CandidateGenerator",
    "DependencyUnavailableError",
    "HybridMatcher",
    "MatchCandidate",
    "MatchDecision",
    "MatcherError",
    "MatchQuality",
    "MatchScorer",
    "MatchTier",
    "TrainingStore",
    "UnknownCatalogEntryError",
    "normalize",
]
