# fx_utils.py
"""
Exchange-rate lookup and on-demand conversion of transaction values.

Rates live in Settings.exchange_rates as a flat list of
(from_currency, to_currency, rate) entries. Lookup takes the first exact
match; update_exchange_rates keeps the newest entry for a pair at the front,
so "first match" and "latest" agree.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from .schemas import ExchangeRate, LedgerEntry, PriceInfo, Settings, TokenValue

logger = logging.getLogger(__name__)


def find_rate(rates: Iterable[ExchangeRate], from_currency: str, to_currency: str) -> Optional[float]:
    """
    Return the rate for from_currency -> to_currency, or None.
    Exact, case-sensitive match; the first entry in list order wins.
    """
    for r in rates:
        if r.from_currency == from_currency and r.to_currency == to_currency:
            return r.rate
    return None


def _with_usd(value: Optional[TokenValue], rates: List[ExchangeRate]) -> Optional[TokenValue]:
    if value is None:
        return None
    rate = find_rate(rates, value.token, "USD")
    if rate is None:
        return value
    return value.model_copy(update={"usd_value": value.amount * rate})


def convert_transaction(tx: LedgerEntry, rates: List[ExchangeRate], target_currency: str) -> LedgerEntry:
    """
    Return a copy of `tx` with converted values filled in.

    - converted_value = value_in.amount * rate when value_in is in another
      currency and a rate exists.
    - for target "USD", usd_value of txn_fee, value_in and value_out are each
      filled from their own rate; a missing rate leaves that field as it was.
    """
    update = {}

    if tx.value_in is not None and tx.value_in.token != target_currency:
        rate = find_rate(rates, tx.value_in.token, target_currency)
        if rate is not None:
            update["converted_value"] = PriceInfo(amount=tx.value_in.amount * rate, currency=target_currency)
        else:
            logger.debug("No %s->%s rate for %s", tx.value_in.token, target_currency, tx.id)

    if target_currency == "USD":
        update["txn_fee"] = _with_usd(tx.txn_fee, rates)
        update["value_in"] = _with_usd(tx.value_in, rates)
        update["value_out"] = _with_usd(tx.value_out, rates)

    return tx.model_copy(update=update)


def apply_exchange_rate_update(settings: Settings, rates: List[ExchangeRate], timestamp: str) -> Settings:
    """
    New rates go to the front of the list; older entries for the same pair
    are dropped. Within `rates`, the first entry for a pair wins.
    """
    incoming: List[ExchangeRate] = []
    pairs = set()
    for r in rates:
        pair = (r.from_currency, r.to_currency)
        if pair not in pairs:
            pairs.add(pair)
            incoming.append(r)
    kept = [r for r in settings.exchange_rates if (r.from_currency, r.to_currency) not in pairs]
    logger.info("Stored %d exchange rates (%d kept from before)", len(incoming), len(kept))
    return settings.model_copy(update={"exchange_rates": incoming + kept, "last_forex_update": timestamp})
