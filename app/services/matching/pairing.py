"""Pairing strategies: which scored pairs are kept, and which consume their transactions."""

import logging
from dataclasses import dataclass, field

import numpy as np
from scipy.optimize import linear_sum_assignment

from app.models.ledger import Transaction
from app.services.rates import ExchangeRate, RateKey

from .candidates import CandidateGenerator, TransferMatch

logger = logging.getLogger(__name__)


@dataclass
class PairingResult:
    """Candidates from one pairing pass plus the ids consumed by auto-link pairs."""

    candidates: list[TransferMatch] = field(default_factory=list)
    matched_debit_ids: set[str] = field(default_factory=set)
    matched_credit_ids: set[str] = field(default_factory=set)


class PairingStrategy:
    """Base class for pairing strategies."""

    name = "base"

    def pair(
        self,
        generator: CandidateGenerator,
        debits: list[Transaction],
        credits: list[Transaction],
        rates: dict[RateKey, ExchangeRate | None],
        auto_link_threshold: int,
    ) -> PairingResult:
        raise NotImplementedError


class GreedyPairing(PairingStrategy):
    """First sufficient match per debit.

    Debits are scanned in order against every unconsumed credit. Every scored
    pair is recorded; the first auto-linkable one consumes both transactions
    and ends the scan for that debit. Not a globally optimal assignment.
    """

    name = "greedy"

    def pair(self, generator, debits, credits, rates, auto_link_threshold):
        result = PairingResult()

        for debit in debits:
            if debit.id in result.matched_debit_ids:
                continue

            for credit in credits:
                if credit.id in result.matched_credit_ids:
                    continue

                match = generator.evaluate(debit, credit, rates)
                if match is None:
                    continue

                result.candidates.append(match)

                if match.is_auto_linkable(auto_link_threshold):
                    result.matched_debit_ids.add(debit.id)
                    result.matched_credit_ids.add(credit.id)
                    break

        return result


class OptimalPairing(PairingStrategy):
    """Maximum-weight assignment over auto-linkable pairs.

    Auto-link pairs are chosen to maximise the summed confidence; remaining
    candidates are kept for review unless they touch a chosen transaction.
    """

    name = "optimal"

    def pair(self, generator, debits, credits, rates, auto_link_threshold):
        result = PairingResult()
        if not debits or not credits:
            return result

        evaluated: list[tuple[int, int, TransferMatch]] = []
        weights = np.zeros((len(debits), len(credits)))

        for i, debit in enumerate(debits):
            for j, credit in enumerate(credits):
                match = generator.evaluate(debit, credit, rates)
                if match is None:
                    continue
                evaluated.append((i, j, match))
                if match.is_auto_linkable(auto_link_threshold):
                    weights[i, j] = match.confidence_score

        chosen: set[tuple[int, int]] = set()
        if weights.any():
            rows, cols = linear_sum_assignment(weights, maximize=True)
            chosen = {(int(i), int(j)) for i, j in zip(rows, cols, strict=True) if weights[i, j] > 0}

        for i, j in chosen:
            result.matched_debit_ids.add(debits[i].id)
            result.matched_credit_ids.add(credits[j].id)

        for i, j, match in evaluated:
            if (i, j) in chosen:
                result.candidates.append(match)
            elif (
                match.debit.id not in result.matched_debit_ids
                and match.credit.id not in result.matched_credit_ids
            ):
                result.candidates.append(match)

        logger.debug(f"Optimal pairing chose {len(chosen)} of {len(evaluated)} pairs")
        return result


PAIRING_STRATEGIES: dict[str, type[PairingStrategy]] = {
    GreedyPairing.name: GreedyPairing,
    OptimalPairing.name: OptimalPairing,
}


def get_pairing_strategy(name: str) -> PairingStrategy:
    """Look up a pairing strategy by name."""
    try:
        return PAIRING_STRATEGIES[name]()
    except KeyError:
        raise ValueError(f"Unknown pairing strategy: {name}") from None
