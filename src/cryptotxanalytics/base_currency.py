# base_currency.py
"""
Infer which Gnosis Pay stablecoin (USDC / EURe / GBPe) an account settles in.

How it works:
- Every value_in / value_out (and optionally txn_fee) whose token normalizes
  to a stablecoin counts as one flow: +1 to that coin's count, +amount to its
  volume.
- Coins are ranked by a primary metric (count or volume, see RankingPolicy).
  An exact tie at the top is broken by the other metric among the tied coins;
  if that ties too, the first coin in USDC, EURe, GBPe order wins.
- confidence = 0.6 * min(gap / max(top, 1), 1) + 0.4 over the metric that
  decided, so always within [0.4, 1.0].

The reason strings are shown to users as-is.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .schemas import DetectedBaseCurrency, LedgerEntry, RankingPolicy
from .tokens import STABLECOINS, currency_code, normalize_token

logger = logging.getLogger(__name__)

NO_TRANSACTIONS = "No transactions to analyze"
NO_STABLECOIN_FLOWS = "No Gnosis Pay stablecoin transactions found"


@dataclass
class FlowStats:
    counts: Dict[str, int] = field(default_factory=lambda: {c: 0 for c in STABLECOINS})
    volume: Dict[str, float] = field(default_factory=lambda: {c: 0.0 for c in STABLECOINS})

    @property
    def total_count(self) -> int:
        return sum(self.counts.values())


def scan_flows(transactions: Iterable[LedgerEntry], include_fees: bool = False) -> FlowStats:
    stats = FlowStats()
    for tx in transactions:
        sides = [tx.value_in, tx.value_out]
        if include_fees:
            sides.append(tx.txn_fee)
        for value in sides:
            if value is None:
                continue
            coin = normalize_token(value.token)
            if coin in stats.counts:
                stats.counts[coin] += 1
                stats.volume[coin] += abs(value.amount or 0.0)
    return stats


def _confidence(top: float, second: float) -> float:
    gap = top - second
    return 0.6 * min(gap / max(top, 1), 1) + 0.4


def _percent(part: float, whole: float) -> int:
    # half-up rounding, as displayed in the dashboard
    return int(math.floor(part / whole * 100 + 0.5)) if whole else 0


def _rank(coins: List[str], metric: Dict[str, float]) -> List[str]:
    return sorted(coins, key=lambda c: -metric[c])


def detect_base_currency(
    transactions: Iterable[LedgerEntry],
    policy: RankingPolicy = RankingPolicy.COUNT_FIRST,
    include_fees: bool = False,
) -> Optional[DetectedBaseCurrency]:
    """
    Pick the dominant stablecoin. Returns None when the ledger has no
    stablecoin flows at all (see base_currency_report for the sentinel form).
    """
    stats = scan_flows(transactions, include_fees=include_fees)
    if stats.total_count == 0:
        return None

    counts = {c: float(n) for c, n in stats.counts.items()}
    volume = stats.volume
    coins = list(STABLECOINS)

    if policy == RankingPolicy.VOLUME_FIRST:
        primary, secondary = volume, counts
    else:
        primary, secondary = counts, volume

    ranked = _rank(coins, primary)
    top = ranked[0]

    if policy == RankingPolicy.VOLUME_FIRST and primary[top] == 0:
        # flows exist but carry no amounts: fall back to counts
        by_count = _rank(coins, counts)
        winner = by_count[0]
        confidence = _confidence(counts[winner], counts[by_count[1]])
        reason = f"Selected {winner} based on {stats.counts[winner]} transactions (no volume data)"
    elif primary[top] == primary[ranked[1]]:
        tied = [c for c in ranked if primary[c] == primary[top]]
        by_secondary = _rank(tied, secondary)
        winner = by_secondary[0]
        confidence = _confidence(secondary[winner], secondary[by_secondary[1]])
        reason = _tie_reason(policy, winner, top, stats)
    else:
        winner = top
        confidence = _confidence(primary[top], primary[ranked[1]])
        reason = _lead_reason(policy, winner, stats)

    logger.info("Detected base currency %s (confidence %.3f): %s", winner, confidence, reason)
    return DetectedBaseCurrency(
        stablecoin=winner,
        currency_code=currency_code(winner),
        confidence=confidence,
        transaction_counts=dict(stats.counts),
        total_volume=dict(stats.volume),
        reason=reason,
    )


def _tie_reason(policy: RankingPolicy, winner: str, top: str, stats: FlowStats) -> str:
    if policy == RankingPolicy.VOLUME_FIRST:
        if winner != top:
            return (
                f"Selected {winner} based on transaction count "
                f"({stats.counts[winner]} transactions) due to volume tie"
            )
        return f"Selected {top} based on volume ({stats.volume[top]:.2f}), confirmed by transaction count"
    if winner != top:
        return f"Selected {winner} based on volume ({stats.volume[winner]:.2f}) due to transaction count tie"
    return (
        f"Selected {top} based on transaction count "
        f"({stats.counts[top]} transactions), confirmed by volume"
    )


def _lead_reason(policy: RankingPolicy, winner: str, stats: FlowStats) -> str:
    if policy == RankingPolicy.VOLUME_FIRST:
        pct = _percent(stats.volume[winner], sum(stats.volume.values()))
        return f"Selected {winner} based on {stats.volume[winner]:.2f} volume ({pct}% of stablecoin volume)"
    pct = _percent(stats.counts[winner], stats.total_count)
    return (
        f"Selected {winner} based on {stats.counts[winner]} transactions "
        f"({pct}% of stablecoin transactions)"
    )


def base_currency_report(
    transactions: List[LedgerEntry],
    policy: RankingPolicy = RankingPolicy.COUNT_FIRST,
    include_fees: bool = False,
) -> DetectedBaseCurrency:
    """Like detect_base_currency, but never None: returns a zero-confidence "no data" result."""
    if not transactions:
        return _empty_report(NO_TRANSACTIONS)
    detected = detect_base_currency(transactions, policy=policy, include_fees=include_fees)
    if detected is None:
        return _empty_report(NO_STABLECOIN_FLOWS)
    return detected


def _empty_report(reason: str) -> DetectedBaseCurrency:
    return DetectedBaseCurrency(
        stablecoin=None,
        currency_code=None,
        confidence=0.0,
        transaction_counts={c: 0 for c in STABLECOINS},
        total_volume={c: 0.0 for c in STABLECOINS},
        reason=reason,
    )


def format_base_currency_display(result: Optional[DetectedBaseCurrency]) -> str:
    if result is None or not result.stablecoin:
        return "Unknown - No Gnosis Pay stablecoin transactions detected"
    return f"{result.stablecoin} ({result.currency_code}) - {result.reason}"
