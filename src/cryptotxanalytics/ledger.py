# ledger.py
"""
Ledger maintenance: merge imported batches, add / update / delete single
entries, and keep TransactionMetadata in sync.

Functions here never mutate their inputs; they return the new transaction
list (and metadata) for the caller to store back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Collection, Iterable, List, Optional, Tuple

from .csv_normalizer import format_iso, parse_timestamp
from .errors import EmptyBatch, NotFound
from .schemas import (
    DateRange,
    LedgerEntry,
    TransactionMetadata,
    UpdateTransactionInput,
)

logger = logging.getLogger(__name__)

# Fields that a patch can set but never clear (null in the patch = unchanged).
_NON_NULLABLE = {"tx_hash", "block_number", "timestamp", "txn_fee", "status"}


@dataclass
class MergeResult:
    added: List[LedgerEntry] = field(default_factory=list)
    skipped_duplicates: int = 0
    skipped_excluded: int = 0


def _is_excluded(tx: LedgerEntry, excluded: Collection[str]) -> bool:
    return bool(tx.contract_address) and tx.contract_address.lower() in excluded


def select_new_transactions(
    existing: Iterable[LedgerEntry],
    incoming: Iterable[LedgerEntry],
    excluded_contracts: Collection[str] = (),
) -> MergeResult:
    """
    Pick the incoming transactions that may be appended.

    Dropped: a tx_hash already in the ledger or earlier in this batch, or a
    contract_address on the exclusion list (case-insensitive). Empty hashes
    are never treated as duplicates. Order is preserved.
    """
    excluded = {c.lower() for c in excluded_contracts}
    seen = {tx.tx_hash for tx in existing if tx.tx_hash}
    result = MergeResult()

    for tx in incoming:
        if _is_excluded(tx, excluded):
            logger.debug("Skipping %s: excluded contract %s", tx.id, tx.contract_address)
            result.skipped_excluded += 1
            continue
        if tx.tx_hash and tx.tx_hash in seen:
            logger.debug("Skipping %s: duplicate hash %s", tx.id, tx.tx_hash)
            result.skipped_duplicates += 1
            continue
        if tx.tx_hash:
            seen.add(tx.tx_hash)
        result.added.append(tx)
    return result


def merge_transactions(
    existing: List[LedgerEntry],
    incoming: List[LedgerEntry],
    excluded_contracts: Collection[str] = (),
) -> List[LedgerEntry]:
    """Append the non-duplicate, non-excluded part of `incoming`. Empty batch -> EmptyBatch."""
    if not incoming:
        raise EmptyBatch("No transactions to import")
    result = select_new_transactions(existing, incoming, excluded_contracts)
    return list(existing) + result.added


def date_range_of(transactions: Iterable[LedgerEntry]) -> Optional[DateRange]:
    """Min/max timestamp over the entries whose timestamp parses; None if none do."""
    parsed = [dt for dt in (parse_timestamp(tx.timestamp) for tx in transactions) if dt is not None]
    if not parsed:
        return None
    return DateRange(start_date=format_iso(min(parsed)), end_date=format_iso(max(parsed)))


def recompute_metadata(
    previous: Optional[TransactionMetadata],
    transactions: List[LedgerEntry],
    added: List[LedgerEntry],
    *,
    imported_at: str,
    tracked_address: Optional[str],
) -> TransactionMetadata:
    """
    Metadata after a batch import.

    The date range covers only the entries added by this import; when none of
    them has a usable timestamp the previous range is kept.
    """
    date_range = date_range_of(added)
    if date_range is None and previous is not None:
        date_range = previous.date_range
    return TransactionMetadata(
        imported_at=imported_at,
        total_transactions=len(transactions),
        date_range=date_range,
        tracked_address=tracked_address,
    )


def add_transaction(
    transactions: List[LedgerEntry],
    metadata: Optional[TransactionMetadata],
    tx: LedgerEntry,
    excluded_contracts: Collection[str] = (),
) -> Tuple[List[LedgerEntry], Optional[TransactionMetadata], bool]:
    """
    Append one transaction. Excluded contracts and already known hashes are
    skipped silently (returns added=False and the inputs unchanged).
    """
    result = select_new_transactions(transactions, [tx], excluded_contracts)
    if not result.added:
        return transactions, metadata, False

    updated = list(transactions) + [tx]
    new_metadata = TransactionMetadata(
        imported_at=metadata.imported_at if metadata else tx.timestamp,
        total_transactions=len(updated),
        date_range=(metadata.date_range if metadata else None)
        or DateRange(start_date=tx.timestamp, end_date=tx.timestamp),
        tracked_address=metadata.tracked_address if metadata else None,
    )
    return updated, new_metadata, True


def _index_of(transactions: List[LedgerEntry], tx_id: str) -> int:
    for i, tx in enumerate(transactions):
        if tx.id == tx_id:
            return i
    raise NotFound(f"Transaction with ID {tx_id} not found", {"id": tx_id})


def update_transaction(
    transactions: List[LedgerEntry], patch: UpdateTransactionInput
) -> List[LedgerEntry]:
    """
    Apply a partial patch. Only fields present in the payload change; an
    explicit null clears nullable fields and is ignored for the others.
    """
    i = _index_of(transactions, patch.id)
    changes = {}
    for name in patch.model_fields_set - {"id"}:
        value = getattr(patch, name)
        if value is None and name in _NON_NULLABLE:
            continue
        changes[name] = value

    current = transactions[i]
    # re-validate so value sides with amount <= 0 are still dropped
    patched = type(current).model_validate({**current.model_dump(), **_dump(changes)})
    updated = list(transactions)
    updated[i] = patched
    return updated


def extend_date_range(
    metadata: Optional[TransactionMetadata], timestamp: str
) -> Optional[TransactionMetadata]:
    """Widen the metadata range to cover a patched timestamp; an unparseable one changes nothing."""
    dt = parse_timestamp(timestamp)
    if metadata is None or dt is None:
        return metadata
    bounds = [dt]
    if metadata.date_range is not None:
        bounds += [
            b
            for b in (
                parse_timestamp(metadata.date_range.start_date),
                parse_timestamp(metadata.date_range.end_date),
            )
            if b is not None
        ]
    date_range = DateRange(start_date=format_iso(min(bounds)), end_date=format_iso(max(bounds)))
    return metadata.model_copy(update={"date_range": date_range})


def _dump(changes: dict) -> dict:
    return {k: v.model_dump() if hasattr(v, "model_dump") else v for k, v in changes.items()}


def delete_transaction(
    transactions: List[LedgerEntry],
    metadata: Optional[TransactionMetadata],
    tx_id: str,
    *,
    now: str,
) -> Tuple[List[LedgerEntry], TransactionMetadata]:
    """Remove by id; the date range is left as it was."""
    i = _index_of(transactions, tx_id)
    updated = transactions[:i] + transactions[i + 1:]
    new_metadata = TransactionMetadata(
        imported_at=metadata.imported_at if metadata else now,
        total_transactions=len(updated),
        date_range=metadata.date_range if metadata else None,
        tracked_address=metadata.tracked_address if metadata else None,
    )
    return updated, new_metadata
