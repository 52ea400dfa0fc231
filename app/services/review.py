"""Human review of queued transfer candidates."""

import logging
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.ledger import TransferCandidate
from app.services.linker import LinkPersistError, TransferLinker
from app.services.loader import TransferDetectionError, lookup_category_id

logger = logging.getLogger(__name__)


class CandidateReviewError(TransferDetectionError):
    """Review action cannot be applied."""

    def __init__(self, message: str, status_code: int = 409):
        super().__init__(message)
        self.status_code = status_code


class CandidateReviewService:
    """Confirms or rejects queued transfer candidates."""

    DEFAULT_REJECTION_REASON = "Not a transfer"

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_candidates(
        self,
        status: str | None = "pending",
        limit: int = 100,
        offset: int = 0,
    ) -> list[TransferCandidate]:
        """List review queue rows, most confident first."""
        query = select(TransferCandidate)
        if status:
            query = query.where(TransferCandidate.status == status)
        query = (
            query.order_by(
                TransferCandidate.confidence_score.desc(), TransferCandidate.date_from
            )
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def confirm(self, candidate_id: str) -> TransferCandidate:
        """Link the candidate's transactions and mark it confirmed."""
        candidate = await self._get_pending(candidate_id)

        category_id = await lookup_category_id(self.session, settings.transfer_category_code)
        linker = TransferLinker(self.session, category_id)
        try:
            await linker.link_pair(candidate.from_transaction_id, candidate.to_transaction_id)
        except LinkPersistError as e:
            await self.session.rollback()
            raise CandidateReviewError(str(e)) from e

        candidate.status = "confirmed"
        candidate.reviewed_at = datetime.now(UTC)
        await self.session.commit()

        logger.info(f"Transfer candidate {candidate_id} confirmed")
        return candidate

    async def reject(self, candidate_id: str, reason: str | None = None) -> TransferCandidate:
        """Mark the candidate rejected."""
        candidate = await self._get_pending(candidate_id)

        candidate.status = "rejected"
        candidate.rejection_reason = reason or self.DEFAULT_REJECTION_REASON
        candidate.reviewed_at = datetime.now(UTC)
        await self.session.commit()

        logger.info(f"Transfer candidate {candidate_id} rejected: {candidate.rejection_reason}")
        return candidate

    async def _get_pending(self, candidate_id: str) -> TransferCandidate:
        candidate = await self.session.get(TransferCandidate, candidate_id)
        if candidate is None:
            raise CandidateReviewError(f"Transfer candidate not found: {candidate_id}", 404)
        if candidate.status != "pending":
            raise CandidateReviewError(
                f"Transfer candidate {candidate_id} is already {candidate.status}"
            )
        return candidate
