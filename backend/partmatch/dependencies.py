"""Global FastAPI dependencies for tenant scoping and matching services.

This module provides:
- get_org_id: Tenant scope from the X-Org-ID header
- get_catalog_provider / get_training_store: shared SQL adapters
- get_training_corpus: shared per-org training snapshot cache
- get_matcher / get_feedback_sink: per-request service objects

Tenant scope is always an explicit parameter; nothing downstream reads
an ambient "current organization".
"""

from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status

from .config import Settings, get_settings
from .feedback.services import LearningFeedbackSink
from .matching.hybrid_matcher import HybridMatcher
from .matching.ports import CatalogProvider, TrainingStore
from .matching.training_index import TrainingCorpus


def get_org_id(x_org_id: Optional[str] = Header(default=None, alias="X-Org-ID")) -> UUID:
    """Extract the organization scope of a request.

    Args:
        x_org_id: Value of the X-Org-ID header

    Returns:
        UUID: Organization ID for the current request context

    Raises:
        HTTPException 400: If the header is missing or not a UUID

    Example:
        @router.post("/resolve")
        def resolve(org_id: UUID = Depends(get_org_id)):
            ...
    """
    if not x_org_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Org-ID header is required",
        )
    try:
        return UUID(x_org_id.strip())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Org-ID header must be a UUID",
        )


def get_catalog_provider(request: Request) -> CatalogProvider:
    """Catalog provider created at application startup."""
    return request.app.state.catalog_provider


def get_training_store(request: Request) -> TrainingStore:
    """Training store created at application startup."""
    return request.app.state.training_store


def get_training_corpus(request: Request) -> TrainingCorpus:
    """Training snapshot cache created at application startup; writers invalidate it."""
    return request.app.state.training_corpus


def get_matcher(
    catalog: CatalogProvider = Depends(get_catalog_provider),
    store: TrainingStore = Depends(get_training_store),
    corpus: TrainingCorpus = Depends(get_training_corpus),
    settings: Settings = Depends(get_settings),
) -> HybridMatcher:
    return HybridMatcher(catalog, store, settings, corpus)


def get_feedback_sink(
    store: TrainingStore = Depends(get_training_store),
    matcher: HybridMatcher = Depends(get_matcher),
    settings: Settings = Depends(get_settings),
) -> LearningFeedbackSink:
    return LearningFeedbackSink(store, matcher, settings)
