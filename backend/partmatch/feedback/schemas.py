"""Pydantic schemas for feedback endpoints."""

from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from ..matching.ports import MatchDecision, MatchQuality, MatchTier


class CandidateScoresSchema(BaseModel):
    """Scores of the candidate the reviewer acted on."""
    final_score: float = Field(ge=0.0, le=1.0)
    trigram_score: float = Field(default=0.0, ge=0.0, le=1.0)
    fuzzy_score: float = Field(default=0.0, ge=0.0, le=1.0)
    alias_score: float = Field(default=0.0, ge=0.0, le=1.0)
    vector_score: float = Field(default=0.0, ge=0.0, le=1.0)
    tier: MatchTier = MatchTier.ALGORITHMIC


class DecisionRequest(BaseModel):
    """Reviewer decision on a proposed match."""
    query_text: str
    entry_id: str = Field(min_length=1)
    decision: MatchDecision
    reviewer_id: Optional[UUID] = None
    scores: Optional[CandidateScoresSchema] = None
    query_embedding: Optional[List[float]] = None


class TrainingExampleSchema(BaseModel):
    """Training example as stored after an approval."""
    id: UUID
    normalized_text: str
    catalog_entry_id: str
    quality: MatchQuality
    confidence: float
    weight: float
    times_referenced: int


class DecisionResponse(BaseModel):
    """Result of recording a decision."""
    recorded: bool
    training_example: Optional[TrainingExampleSchema] = None


class AliasRequest(BaseModel):
    """Request to create or refresh a competitor alias."""
    competitor_name: str = Field(min_length=1)
    competitor_sku: Optional[str] = None
    entry_id: str = Field(min_length=1)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    created_by: Optional[UUID] = None

    @field_validator("competitor_name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("competitor_name must not be blank")
        return v


class AliasResponse(BaseModel):
    """Competitor alias row."""
    id: UUID
    catalog_entry_id: str
    competitor_name: str
    normalized_name: str
    competitor_sku: Optional[str] = None
    confidence: float


class TrainingImportError(BaseModel):
    """Single row error from training CSV import."""
    row: int
    pdf_description: Optional[str] = None
    error: str


class TrainingImportResult(BaseModel):
    """Result of training CSV import."""
    total_rows: int
    imported_count: int
    skipped_count: int
    errors: List[TrainingImportError]
