"""Transfer detection orchestrator - one request-scoped reconciliation pass."""

import logging
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.services.linker import TransferLinker
from app.services.loader import (
    TransactionFilter,
    TransactionLoader,
    lookup_category_id,
    validate_selection,
)
from app.services.matching import (
    CandidateGenerator,
    ConfidenceScorer,
    PairingStrategy,
    PendingTransferMatcher,
    TransferMatch,
    get_pairing_strategy,
)
from app.services.rates import ExchangeRateClient, ExchangeRateResolver

logger = logging.getLogger(__name__)


@dataclass
class DetectionRequest:
    """Parameters of one detection run."""

    transaction_ids: list[str] | None = None
    filter: TransactionFilter | None = None
    auto_link_threshold: float = settings.auto_link_threshold
    date_tolerance_days: int = settings.date_tolerance_days
    batch_id: str | None = None
    dry_run: bool = False


@dataclass
class DetectionSummary:
    """Counters reported for a run."""

    analyzed: int = 0
    debits: int = 0
    credits: int = 0
    candidates: int = 0
    auto_linked: int = 0
    pending_hitl: int = 0
    cross_company: int = 0
    pending_transfers_matched: int = 0
    pending_transfers_partial: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class DetectionResult:
    """Result of a detection run."""

    summary: DetectionSummary
    auto_linked: list[TransferMatch] = field(default_factory=list)
    pending_hitl: list[TransferMatch] = field(default_factory=list)
    message: str | None = None
    duration_seconds: float = 0.0


class TransferDetectionService:
    """Detects internal transfers between bank accounts.

    Flow:
    1. Load debit/credit transactions
    2. Match against pending (declared) transfers
    3. Resolve exchange rates for cross-currency pairs
    4. Pair and score debits against credits
    5. Auto-link confident same-company pairs, queue the rest for review
    6. Update the parent reanalysis batch
    """

    def __init__(
        self,
        session: AsyncSession,
        rate_client: ExchangeRateClient,
        pairing_strategy: PairingStrategy | None = None,
        scorer: ConfidenceScorer | None = None,
    ):
        self.session = session
        self.rate_client = rate_client
        self.pairing_strategy = pairing_strategy or get_pairing_strategy(settings.pairing_strategy)
        self.scorer = scorer or ConfidenceScorer()
        self.loader = TransactionLoader(session)
        self.resolver = ExchangeRateResolver(session, rate_client)

    async def detect(self, request: DetectionRequest) -> DetectionResult:
        """Run transfer detection.

        Raises:
            InvalidRequestError: If the transaction selection is invalid
            LoadFailureError: If transactions cannot be read
        """
        validate_selection(request.transaction_ids, request.filter)
        start_time = datetime.now(UTC)

        logger.info(
            f"Detecting transfers: ids={len(request.transaction_ids or [])} "
            f"filter={request.filter} threshold={request.auto_link_threshold} "
            f"tolerance={request.date_tolerance_days}d dry_run={request.dry_run}"
        )

        try:
            result = await self._run(request)
        except Exception:
            await self.session.rollback()
            raise

        result.duration_seconds = (datetime.now(UTC) - start_time).total_seconds()
        logger.info(f"Transfer detection complete: {result.summary}")
        return result

    async def _run(self, request: DetectionRequest) -> DetectionResult:
        transactions = await self.loader.load(request.transaction_ids, request.filter)
        if not transactions:
            return DetectionResult(summary=DetectionSummary(), message="No transactions found")

        category_id = await lookup_category_id(self.session, settings.transfer_category_code)

        # Pending transfers first; claimed transactions are not paired again
        pending_matcher = PendingTransferMatcher(self.session, category_id)
        pending_result = await pending_matcher.match(transactions, dry_run=request.dry_run)
        claimed = pending_result.claimed_ids

        debits = [t for t in transactions if t.transaction_type == "debit"]
        credits = [t for t in transactions if t.transaction_type == "credit"]
        logger.info(f"Debits: {len(debits)}, Credits: {len(credits)}")

        open_debits = [t for t in debits if t.id not in claimed]
        open_credits = [t for t in credits if t.id not in claimed]

        generator = CandidateGenerator(self.scorer, request.date_tolerance_days)
        rates = await self.resolver.resolve_many(generator.rate_keys(open_debits, open_credits))

        pairing = self.pairing_strategy.pair(
            generator, open_debits, open_credits, rates, request.auto_link_threshold
        )
        logger.info(f"Found {len(pairing.candidates)} transfer candidates")

        linker = TransferLinker(self.session, category_id)
        outcome = await linker.process(
            pairing.candidates,
            request.auto_link_threshold,
            batch_id=request.batch_id,
            dry_run=request.dry_run,
        )

        if request.batch_id and not request.dry_run:
            await linker.report_batch(
                request.batch_id,
                detected=len(pairing.candidates),
                auto_linked=len(outcome.auto_linked),
                pending_hitl=len(outcome.pending_hitl),
            )

        if not request.dry_run:
            await self.session.commit()

        summary = DetectionSummary(
            analyzed=len(transactions),
            debits=len(debits),
            credits=len(credits),
            candidates=len(pairing.candidates),
            auto_linked=len(outcome.auto_linked),
            pending_hitl=len(outcome.pending_hitl),
            cross_company=sum(1 for c in pairing.candidates if c.is_cross_company),
            pending_transfers_matched=pending_result.matched,
            pending_transfers_partial=pending_result.partial,
        )

        return DetectionResult(
            summary=summary,
            auto_linked=outcome.auto_linked,
            pending_hitl=outcome.pending_hitl,
        )
