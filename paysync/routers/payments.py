"""Milestone payment endpoints."""
from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, status

from paysync.schemas.payment import (
    MilestonePaymentRead,
    PayMilestoneRequest,
    PayMilestoneResponse,
    PendingListRead,
    SweepResult,
)
from paysync.security import require_api_key
from paysync.services.payment_sync import PaymentSyncService, get_payment_service
from paysync.utils.errors import AuthError, MalformedDataError, PaymentSyncError, error_response

router = APIRouter(prefix="/payments", tags=["payments"], dependencies=[Depends(require_api_key)])


def _backend_failure(exc: PaymentSyncError) -> HTTPException:
    if isinstance(exc, AuthError):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("BACKEND_AUTH_FAILED", "Backend session expired. Please sign in again."),
        )
    if isinstance(exc, MalformedDataError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=error_response("BACKEND_MALFORMED_RESPONSE", exc.message),
        )
    details = {"status_code": exc.status_code} if exc.status_code else None
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=error_response("BACKEND_UNAVAILABLE", exc.message, details),
    )


@router.get("/pending", response_model=PendingListRead)
def list_pending(service: PaymentSyncService = Depends(get_payment_service)) -> PendingListRead:
    """List milestones with a payment in flight."""

    return service.pending()


@router.post("/pending/sweep", response_model=SweepResult)
def sweep_pending(service: PaymentSyncService = Depends(get_payment_service)) -> SweepResult:
    return service.sweep_stale()


@router.post(
    "/{bid_id}/milestones/{milestone_index}/pay",
    response_model=PayMilestoneResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def pay_milestone(
    bid_id: int = Path(ge=0),
    milestone_index: int = Path(ge=0),
    payload: PayMilestoneRequest | None = Body(default=None),
    service: PaymentSyncService = Depends(get_payment_service),
) -> PayMilestoneResponse:
    """Queue the payout of a milestone and start tracking it."""

    try:
        method = payload.method if payload is not None else "safe"
        return await service.queue_payment(bid_id, milestone_index, method)
    except PaymentSyncError as exc:
        raise _backend_failure(exc) from exc


@router.post("/{bid_id}/milestones/{milestone_index}/poll", response_model=MilestonePaymentRead)
async def retry_polling(
    bid_id: int = Path(ge=0),
    milestone_index: int = Path(ge=0),
    service: PaymentSyncService = Depends(get_payment_service),
) -> MilestonePaymentRead:
    """Restart status polling after a timeout or a re-login."""

    service.retry(bid_id, milestone_index)
    return await service.describe(bid_id, milestone_index)


@router.get("/{bid_id}/milestones/{milestone_index}", response_model=MilestonePaymentRead)
async def get_milestone_payment(
    bid_id: int = Path(ge=0),
    milestone_index: int = Path(ge=0),
    refresh: bool = Query(default=False),
    service: PaymentSyncService = Depends(get_payment_service),
) -> MilestonePaymentRead:
    try:
        return await service.describe(bid_id, milestone_index, refresh=refresh)
    except PaymentSyncError as exc:
        raise _backend_failure(exc) from exc
