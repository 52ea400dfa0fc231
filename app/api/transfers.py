"""Transfer detection and review API endpoints."""

import logging
from collections.abc import AsyncIterator
from datetime import date, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_session
from app.models.ledger import TransferCandidate
from app.services.cache import CacheClient
from app.services.detect import DetectionRequest, DetectionResult, TransferDetectionService
from app.services.loader import InvalidRequestError, TransactionFilter, validate_selection
from app.services.matching import TransferMatch
from app.services.rates import ExchangeRateClient
from app.services.review import CandidateReviewError, CandidateReviewService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/transfers", tags=["transfers"])


async def get_rate_client() -> AsyncIterator[ExchangeRateClient]:
    """Exchange rate client for the duration of a request."""
    async with ExchangeRateClient() as client:
        yield client


async def get_cache_client() -> AsyncIterator[CacheClient | None]:
    """Redis client for run locks, or None when locking is disabled."""
    if not settings.run_lock_enabled:
        yield None
        return
    async with CacheClient() as cache:
        yield cache


class DetectFilter(BaseModel):
    """Filter-mode transaction selection."""

    statement_import_id: str | None = None
    bank_account_id: str | None = None
    date_from: date | None = None
    date_to: date | None = None


class DetectRequest(BaseModel):
    """Request to run transfer detection."""

    transaction_ids: list[str] | None = None
    filter: DetectFilter | None = None
    auto_link_threshold: float = Field(default=settings.auto_link_threshold, ge=0, le=100)
    date_tolerance_days: int = Field(default=settings.date_tolerance_days, ge=0)
    batch_id: str | None = None
    dry_run: bool = False

    def to_detection_request(self) -> DetectionRequest:
        return DetectionRequest(
            transaction_ids=self.transaction_ids,
            filter=TransactionFilter(**self.filter.model_dump()) if self.filter else None,
            auto_link_threshold=self.auto_link_threshold,
            date_tolerance_days=self.date_tolerance_days,
            batch_id=self.batch_id,
            dry_run=self.dry_run,
        )


class RejectRequest(BaseModel):
    """Reason for rejecting a candidate."""

    reason: str | None = None


class CandidateResponse(BaseModel):
    """Queued transfer candidate."""

    id: str
    batch_id: str | None
    from_transaction_id: str
    to_transaction_id: str
    amount_from: float
    amount_to: float
    currency_from: str
    currency_to: str
    exchange_rate_used: float | None
    exchange_rate_source: str | None
    date_from: date
    date_to: date
    date_diff_days: int
    is_cross_company: bool
    confidence_score: int
    confidence_factors: dict | None
    status: str
    reviewed_at: datetime | None
    rejection_reason: str | None


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(content={"success": False, "error": message}, status_code=status_code)


def _auto_linked_item(match: TransferMatch) -> dict:
    return {
        "from_id": match.debit.id,
        "to_id": match.credit.id,
        "amount": float(match.debit.effective_amount),
        "confidence": match.confidence_score,
    }


def _pending_hitl_item(match: TransferMatch) -> dict:
    return {
        "from_id": match.debit.id,
        "from_description": match.debit.description,
        "from_amount": float(match.debit.effective_amount),
        "from_date": match.debit.effective_date.isoformat(),
        "to_id": match.credit.id,
        "to_description": match.credit.description,
        "to_amount": float(match.credit.effective_amount),
        "to_date": match.credit.effective_date.isoformat(),
        "confidence": match.confidence_score,
        "is_cross_company": match.is_cross_company,
        "exchange_rate": (
            float(match.exchange_rate_used) if match.exchange_rate_used is not None else None
        ),
    }


def _detection_payload(result: DetectionResult) -> dict:
    payload = {
        "success": True,
        "summary": result.summary.to_dict(),
        "auto_linked": [_auto_linked_item(m) for m in result.auto_linked],
        "pending_hitl": [_pending_hitl_item(m) for m in result.pending_hitl],
    }
    if result.message:
        payload["message"] = result.message
    return payload


def _candidate_response(candidate: TransferCandidate) -> CandidateResponse:
    return CandidateResponse(
        id=candidate.id,
        batch_id=candidate.batch_id,
        from_transaction_id=candidate.from_transaction_id,
        to_transaction_id=candidate.to_transaction_id,
        amount_from=float(candidate.amount_from),
        amount_to=float(candidate.amount_to),
        currency_from=candidate.currency_from,
        currency_to=candidate.currency_to,
        exchange_rate_used=(
            float(candidate.exchange_rate_used)
            if candidate.exchange_rate_used is not None
            else None
        ),
        exchange_rate_source=candidate.exchange_rate_source,
        date_from=candidate.date_from,
        date_to=candidate.date_to,
        date_diff_days=candidate.date_diff_days,
        is_cross_company=candidate.is_cross_company,
        confidence_score=candidate.confidence_score,
        confidence_factors=candidate.confidence_factors,
        status=candidate.status,
        reviewed_at=candidate.reviewed_at,
        rejection_reason=candidate.rejection_reason,
    )


@router.post("/detect")
async def detect_transfers(
    body: DetectRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    rate_client: Annotated[ExchangeRateClient, Depends(get_rate_client)],
    cache: Annotated[CacheClient | None, Depends(get_cache_client)],
):
    """Detect internal transfers, auto-link confident pairs and queue the rest."""
    request = body.to_detection_request()
    try:
        validate_selection(request.transaction_ids, request.filter)
    except InvalidRequestError as e:
        return _error(str(e), 400)

    lock_key = lock_token = None
    if cache is not None and not request.dry_run:
        lock_key = CacheClient.scope_key(
            request.transaction_ids, body.filter.model_dump() if body.filter else None
        )
        try:
            lock_token = await cache.acquire_run_lock(lock_key)
        except RedisError as e:
            logger.warning(f"Run lock unavailable, continuing without it: {e}")
        else:
            if lock_token is None:
                return _error("A detection run over these transactions is already in progress", 409)

    try:
        service = TransferDetectionService(session, rate_client)
        result = await service.detect(request)
    except InvalidRequestError as e:
        return _error(str(e), 400)
    except Exception as e:
        logger.error(f"Detect transfers error: {e}")
        return _error(str(e) or "Unknown error", 500)
    finally:
        if lock_token is not None:
            try:
                await cache.release_run_lock(lock_key, lock_token)
            except RedisError as e:
                logger.warning(f"Failed to release run lock {lock_key}: {e}")

    return _detection_payload(result)


@router.get("/candidates", response_model=list[CandidateResponse])
async def list_candidates(
    session: Annotated[AsyncSession, Depends(get_session)],
    status: str | None = Query("pending", description="Filter by review status"),
    limit: int = Query(100, le=1000),
    offset: int = Query(0, ge=0),
):
    """List queued transfer candidates."""
    service = CandidateReviewService(session)
    candidates = await service.list_candidates(status=status or None, limit=limit, offset=offset)
    return [_candidate_response(c) for c in candidates]


@router.post("/candidates/{candidate_id}/confirm", response_model=CandidateResponse)
async def confirm_candidate(
    candidate_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
):
    """Confirm a candidate and link its transactions."""
    service = CandidateReviewService(session)
    try:
        candidate = await service.confirm(candidate_id)
    except CandidateReviewError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e
    return _candidate_response(candidate)


@router.post("/candidates/{candidate_id}/reject", response_model=CandidateResponse)
async def reject_candidate(
    candidate_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
    body: RejectRequest | None = None,
):
    """Reject a candidate."""
    service = CandidateReviewService(session)
    try:
        candidate = await service.reject(candidate_id, body.reason if body else None)
    except CandidateReviewError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e
    return _candidate_response(candidate)
