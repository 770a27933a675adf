"""Matching API endpoints.

Errors from the matcher are mapped to HTTP status codes by the exception
handlers registered in ``main``.
"""

from uuid import UUID

from fastapi import APIRouter, Depends

from ..dependencies import get_matcher, get_org_id
from .hybrid_matcher import HybridMatcher
from .normalizer import normalize
from .schemas import (
    BatchResolveRequest,
    BatchResolveResponse,
    ExplainRequest,
    MatchCandidateSchema,
    ResolveRequest,
    ResolveResponse,
)

router = APIRouter(prefix="/api/v1/matches", tags=["matching"])


@router.post("/resolve", response_model=ResolveResponse)
def resolve_matches(
    request: ResolveRequest,
    org_id: UUID = Depends(get_org_id),
    matcher: HybridMatcher = Depends(get_matcher),
):
    """Resolve a line-item text to ranked catalog candidates.

    Approved training matches win outright; algorithmic matches are only
    returned when no training example is similar enough. An empty
    candidate list is a normal answer, not an error.

    Args:
        request: Query text, optional limit / threshold / embedding
        org_id: Organization scope from X-Org-ID
        matcher: Hybrid matcher

    Returns:
        ResolveResponse with candidates ordered by final score
    """
    candidates = matcher.resolve(
        request.query_text,
        org_id,
        limit=request.limit,
        threshold=request.threshold,
        query_embedding=request.query_embedding,
    )
    return ResolveResponse(
        query_text=request.query_text,
        normalized_query=normalize(request.query_text),
        candidates=[MatchCandidateSchema.from_candidate(c) for c in candidates],
    )


@router.post("/resolve-batch", response_model=BatchResolveResponse)
def resolve_matches_batch(
    request: BatchResolveRequest,
    org_id: UUID = Depends(get_org_id),
    matcher: HybridMatcher = Depends(get_matcher),
):
    """Resolve many independent queries; results keep input order."""
    results = matcher.resolve_batch(
        [q.query_text for q in request.queries],
        org_id,
        limit=request.limit,
        threshold=request.threshold,
        query_embeddings=[q.query_embedding for q in request.queries],
    )
    return BatchResolveResponse(
        results=[
            ResolveResponse(
                query_text=query.query_text,
                normalized_query=normalize(query.query_text),
                candidates=[MatchCandidateSchema.from_candidate(c) for c in candidates],
            )
            for query, candidates in zip(request.queries, results)
        ]
    )


@router.post("/explain", response_model=MatchCandidateSchema)
def explain_match(
    request: ExplainRequest,
    org_id: UUID = Depends(get_org_id),
    matcher: HybridMatcher = Depends(get_matcher),
):
    """Scores a specific catalog entry receives for a query."""
    candidate = matcher.explain(
        request.query_text,
        org_id,
        request.entry_id,
        query_embedding=request.query_embedding,
    )
    return MatchCandidateSchema.from_candidate(candidate)
