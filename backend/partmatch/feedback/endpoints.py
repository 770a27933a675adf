"""Feedback API endpoints for match decisions, aliases and training import

This module provides API endpoints that feed the learning loop:
- POST /feedback/decisions - Approve or reject a proposed match
- POST /feedback/aliases - Create or refresh a competitor alias
- POST /feedback/training/import - Seed training examples from CSV
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status

from ..config import Settings, get_settings
from ..dependencies import (
    get_catalog_provider,
    get_feedback_sink,
    get_org_id,
    get_training_corpus,
    get_training_store,
)
from ..matching.normalizer import normalize
from ..matching.ports import CatalogProvider, TrainingStore
from ..matching.training_index import TrainingCorpus
from .import_service import TrainingImportService
from .schemas import (
    AliasRequest,
    AliasResponse,
    DecisionRequest,
    DecisionResponse,
    TrainingExampleSchema,
    TrainingImportResult,
)
from .services import LearningFeedbackSink, ReportedScores

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/feedback", tags=["feedback"])


@router.post("/decisions", response_model=DecisionResponse)
def record_decision(
    request: DecisionRequest,
    org_id: UUID = Depends(get_org_id),
    sink: LearningFeedbackSink = Depends(get_feedback_sink),
):
    """Record a reviewer's approval or rejection of a proposed match.

    Approving the same (query, entry) pair again refreshes the existing
    training example rather than creating a second one.

    Args:
        request: Query text, entry, decision and optional originating scores
        org_id: Organization scope from X-Org-ID
        sink: Learning feedback sink

    Returns:
        DecisionResponse; training_example is set for approvals
    """
    scores = ReportedScores(**request.scores.model_dump()) if request.scores else None
    record = sink.record_decision(
        org_id,
        request.query_text,
        request.entry_id,
        request.decision,
        reviewer_id=request.reviewer_id,
        scores=scores,
        query_embedding=request.query_embedding,
    )

    # Blank queries are ignored by the sink
    if not normalize(request.query_text):
        return DecisionResponse(recorded=False)

    return DecisionResponse(
        recorded=True,
        training_example=TrainingExampleSchema(
            id=record.id,
            normalized_text=record.normalized_text,
            catalog_entry_id=record.catalog_entry_id,
            quality=record.quality,
            confidence=record.confidence,
            weight=record.weight,
            times_referenced=record.times_referenced,
        ) if record else None,
    )


@router.post("/aliases", response_model=AliasResponse, status_code=status.HTTP_201_CREATED)
def upsert_alias(
    request: AliasRequest,
    org_id: UUID = Depends(get_org_id),
    sink: LearningFeedbackSink = Depends(get_feedback_sink),
):
    """Create or refresh a competitor alias for a catalog entry."""
    try:
        alias = sink.add_alias(
            org_id,
            competitor_name=request.competitor_name,
            entry_id=request.entry_id,
            confidence=request.confidence,
            competitor_sku=request.competitor_sku,
            created_by=request.created_by,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return AliasResponse(
        id=alias.id,
        catalog_entry_id=alias.catalog_entry_id,
        competitor_name=alias.competitor_name,
        normalized_name=alias.normalized_name,
        competitor_sku=alias.competitor_sku or None,
        confidence=alias.confidence,
    )


@router.post("/training/import", response_model=TrainingImportResult)
async def import_training_data(
    file: UploadFile = File(..., description="CSV file with known-good matches"),
    imported_by: Optional[UUID] = Query(default=None),
    org_id: UUID = Depends(get_org_id),
    store: TrainingStore = Depends(get_training_store),
    catalog: CatalogProvider = Depends(get_catalog_provider),
    corpus: TrainingCorpus = Depends(get_training_corpus),
    settings: Settings = Depends(get_settings),
):
    """
    Import training examples from a CSV file.

    CSV must have columns:
    - Required: pdf_description, and catalog_sku or catalog_description
    - Optional: match_quality (excellent|good|fair|poor), confidence (0-1)

    Args:
        file: CSV file
        imported_by: User recorded as approver
        org_id: Organization scope from X-Org-ID
        store: Training store
        catalog: Catalog provider
        corpus: Training snapshot cache, dropped for the org after the import
        settings: Import settings

    Returns:
        Import result with counts and row errors
    """
    # Validate file type
    if not (file.filename or '').lower().endswith('.csv'):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="File must be a CSV"
        )

    file_bytes = await file.read()

    import_service = TrainingImportService(store, catalog, org_id, settings, corpus)
    try:
        result = import_service.import_from_csv(file_bytes, imported_by=imported_by)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info(f"Training CSV import for org {org_id}: {result.imported_count}/{result.total_rows} rows")
    return result
