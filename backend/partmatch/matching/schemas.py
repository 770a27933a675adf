"""Pydantic schemas for matching endpoints."""

from typing import List, Optional

from pydantic import BaseModel, Field

from .ports import MatchCandidate, MatchTier


class ResolveRequest(BaseModel):
    """Input schema for a resolve request.

    ``limit`` and ``threshold`` are clamped by the matcher rather than
    rejected, so no bounds are declared here.
    """
    query_text: Optional[str] = None
    limit: Optional[int] = None
    threshold: Optional[float] = None
    query_embedding: Optional[List[float]] = None


class BatchQuery(BaseModel):
    """One query of a batch request."""
    query_text: Optional[str] = None
    query_embedding: Optional[List[float]] = None


class BatchResolveRequest(BaseModel):
    """Input schema for batch resolution."""
    queries: List[BatchQuery] = Field(max_length=500)
    limit: Optional[int] = None
    threshold: Optional[float] = None


class ExplainRequest(BaseModel):
    """Request for the scores one entry gets for a query."""
    query_text: str
    entry_id: str = Field(min_length=1)
    query_embedding: Optional[List[float]] = None


class MatchCandidateSchema(BaseModel):
    """Match candidate with component scores and rationale."""
    entry_id: str
    sku: str
    name: str
    manufacturer: Optional[str] = None
    category: Optional[str] = None
    vector_score: float = Field(ge=0.0, le=1.0)
    trigram_score: float = Field(ge=0.0, le=1.0)
    fuzzy_score: float = Field(ge=0.0, le=1.0)
    alias_score: float = Field(ge=0.0, le=1.0)
    learned_score: float = Field(ge=0.0, le=1.0)
    final_score: float = Field(ge=0.0, le=1.0)
    tier: MatchTier
    matched_via: str
    rationale: str
    is_training_match: bool

    @classmethod
    def from_candidate(cls, candidate: MatchCandidate) -> "MatchCandidateSchema":
        return cls(**candidate.to_dict())


class ResolveResponse(BaseModel):
    """Result of resolving one query."""
    query_text: Optional[str] = None
    normalized_query: str
    candidates: List[MatchCandidateSchema]


class BatchResolveResponse(BaseModel):
    """Results of a batch request, in input order."""
    results: List[ResolveResponse]
