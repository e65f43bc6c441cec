"""
API router for claim endpoints.
"""
import math
from datetime import datetime, timezone
from typing import Annotated, Optional
from fastapi import APIRouter, HTTPException, Path, Query

from app.api.dependencies import ClaimRepositoryDep, CoordinatorDep
from app.api.v1.models.requests import RejectClaimRequest
from app.api.v1.models.responses import ClaimListResponse, ClaimTimelineResponse, Pagination
from app.domain.models import Claim, ClaimStatus, utcnow
from app.infrastructure.repositories import ClaimNotFoundError, ClaimSummary


router = APIRouter(
    prefix="/claims",
    tags=["claims"],
)

ClaimIdPath = Annotated[str, Path(description="Unique identifier for the claim")]


def months_back(now: datetime, months: int) -> datetime:
    """Start of the ``months`` calendar months that end with the month of ``now``."""
    year, month = divmod(now.year * 12 + now.month - 1 - (months - 1), 12)
    return datetime(year, month + 1, 1, tzinfo=timezone.utc)


@router.get(
    "",
    response_model=ClaimListResponse,
    summary="List claims",
    responses={429: {"description": "Rate limit exceeded"}},
)
async def list_claims(
    claims: ClaimRepositoryDep,
    farmer_id: Annotated[Optional[str], Query(description="Only this farmer's claims")] = None,
    status: Annotated[Optional[ClaimStatus], Query(description="Only claims in this status")] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    page: Annotated[int, Query(ge=1)] = 1,
) -> ClaimListResponse:
    """
    List claims, newest first.

    Args:
        claims: Claim repository (injected dependency)
        farmer_id: Optional farmer filter
        status: Optional status filter
        limit: Page size
        page: Page number (1-based)

    Returns:
        ClaimListResponse with pagination metadata
    """
    offset = (page - 1) * limit
    items = await claims.list_claims(farmer_id=farmer_id, status=status, limit=limit, offset=offset)
    total = await claims.count(farmer_id=farmer_id, status=status)

    return ClaimListResponse(
        claims=items,
        pagination=Pagination(
            current_page=page,
            total_pages=math.ceil(total / limit),
            total_claims=total,
            has_next=page * limit < total,
            has_prev=page > 1,
        ),
    )


@router.get(
    "/stats/summary",
    response_model=ClaimSummary,
    summary="Claim payout summary",
)
async def claims_summary(
    claims: ClaimRepositoryDep,
    farmer_id: Annotated[Optional[str], Query(description="Only this farmer's claims")] = None,
) -> ClaimSummary:
    """
    Summarize payouts by status.

    Args:
        claims: Claim repository (injected dependency)
        farmer_id: Optional farmer filter

    Returns:
        ClaimSummary
    """
    return await claims.summarize(farmer_id)



@router.get(
    "/stats/timeline",
    response_model=ClaimTimelineResponse,
    summary="Claims per month",
)
async def claims_timeline(
    claims: ClaimRepositoryDep,
    farmer_id: Annotated[Optional[str], Query(description="Only this farmer's claims")] = None,
    months: Annotated[int, Query(ge=1, le=12, description="Calendar months to cover, including the current one")] = 6,
) -> ClaimTimelineResponse:
    """
    Count claims and payout amounts per creation month and status.

    Args:
        claims: Claim repository (injected dependency)
        farmer_id: Optional farmer filter
        months: Number of calendar months, ending with the current one

    Returns:
        ClaimTimelineResponse ordered by year, then month
    """
    end = utcnow()
    start = months_back(end, months)
    timeline = await claims.timeline(farmer_id=farmer_id, since=start)
    return ClaimTimelineResponse(timeline=timeline, months=months, start=start, end=end)


@router.get(
    "/{claim_id}",
    response_model=Claim,
    summary="Get a claim",
    responses={404: {"description": "Claim not found"}},
)
async def get_claim(
    claim_id: ClaimIdPath,
    claims: ClaimRepositoryDep,
) -> Claim:
    """
    Get a claim by id.

    Args:
        claim_id: Unique identifier for the claim
        claims: Claim repository (injected dependency)

    Returns:
        The claim
    """
    try:
        return await claims.get_claim(claim_id)
    except ClaimNotFoundError:
        raise HTTPException(
            status_code=404,
            detail=f"Claim with ID '{claim_id}' not found"
        )


@router.post(
    "/{claim_id}/reject",
    response_model=Claim,
    summary="Reject a pending claim",
    responses={
        404: {"description": "Claim not found"},
        409: {"description": "Claim is no longer pending or its transfer state is unknown"},
    },
)
async def reject_claim(
    claim_id: ClaimIdPath,
    body: RejectClaimRequest,
    coordinator: CoordinatorDep,
) -> Claim:
    """
    Administratively reject a pending claim.

    Args:
        claim_id: Unique identifier for the claim
        body: Reviewer and notes
        coordinator: Settlement coordinator (injected dependency)

    Returns:
        The rejected claim
    """
    try:
        return await coordinator.reject_claim(claim_id, body.reviewed_by, body.notes)
    except ClaimNotFoundError:
        raise HTTPException(
            status_code=404,
            detail=f"Claim with ID '{claim_id}' not found"
        )
