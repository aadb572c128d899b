# csv_normalizer.py
"""
Tabular import parsing for explorer CSV exports.

Responsibilities:
- Split raw CSV text into rows keyed by the original header strings.
- Resolve canonical fields from loosely named headers (case-insensitive,
  punctuation-insensitive, substring matching) through one declarative table,
  all fields of a row at once so one column never feeds two fields.
- Pull token hints out of headers such as "Value_IN(EURe)".
- Parse numbers and timestamps permissively: bad cells become None/defaults,
  never errors.

Design choices:
- This module is "pure" (no document state). It converts text -> dict rows.
- Quoted cells containing commas are NOT supported: a line is split on every
  comma and all double quotes are dropped. Real exports with labelled
  addresses can misparse; rows whose cell count no longer matches the header
  are skipped.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Collection, Dict, List, Optional, Sequence, Tuple

from pydantic import TypeAdapter, ValidationError

from .errors import InvalidFormat

logger = logging.getLogger(__name__)

ParsedRow = Dict[str, str]


@dataclass(frozen=True)
class FieldSpec:
    """A canonical field and the header names it is known under, best first."""

    name: str
    variants: Tuple[str, ...]
    token_hint: bool = False


# Header families seen in Etherscan/Gnosisscan exports and hand-made CSVs.
FIELD_SPECS: Dict[str, FieldSpec] = {
    fs.name: fs
    for fs in (
        FieldSpec("timestamp", ("DateTime (UTC)", "DateTime", "timestamp", "date")),
        FieldSpec("tx_hash", ("Transaction Hash", "TxHash", "hash")),
        FieldSpec("block_number", ("Blockno", "Block Number", "blockNumber")),
        FieldSpec("from_address", ("From", "fromAddress", "sender")),
        FieldSpec("to_address", ("To", "toAddress", "recipient")),
        FieldSpec("contract_address", ("ContractAddress", "tokenAddress", "contract")),
        FieldSpec("value_in", ("Value_IN", "valueIn", "amountIn"), token_hint=True),
        FieldSpec("value_out", ("Value_OUT", "valueOut", "amountOut", "value", "amount"), token_hint=True),
        FieldSpec("token_symbol", ("TokenSymbol", "token", "symbol", "asset")),
        FieldSpec("txn_fee", ("TxnFee(DAI)", "TxnFee(USD)", "TxnFee", "fee", "gasFee"), token_hint=True),
        FieldSpec("historical_price", ("Historical $P", "historicalPrice")),
        FieldSpec("current_value", ("CurrentValue TxnFee(x)", "currentValue")),
        FieldSpec("status", ("Status", "status", "state")),
        FieldSpec("error_code", ("ErrCode", "errorCode", "error")),
        FieldSpec("method", ("Method", "method", "function")),
    )
}


@dataclass(frozen=True)
class ResolvedField:
    value: str = ""
    token: str = ""
    header: str = ""


def _split_line(line: str) -> List[str]:
    return [cell.strip().replace('"', "") for cell in line.split(",")]


def parse_import(raw_text: str) -> List[ParsedRow]:
    """
    Parse CSV text into a list of {original header: cell} dicts.

    Raises InvalidFormat when there is no header row plus at least one data
    row. Lines with the wrong number of cells are skipped silently.
    """
    lines = [line.strip() for line in (raw_text or "").splitlines()]
    lines = [line for line in lines if line]
    if len(lines) < 2:
        raise InvalidFormat(
            "CSV must contain header row and at least one data row",
            {"lines": len(lines)},
        )

    headers = _split_line(lines[0])
    rows: List[ParsedRow] = []
    for line_no, line in enumerate(lines[1:], start=2):
        values = _split_line(line)
        if len(values) != len(headers):
            logger.debug(
                "Skipping line %d: %d cells, header has %d", line_no, len(values), len(headers)
            )
            continue
        rows.append(dict(zip(headers, values)))
    return rows


def normalize_header(header: str) -> str:
    """Lowercase and strip everything but letters and digits: 'Value_IN(EURe)' -> 'valueineure'."""
    return re.sub(r"[^a-z0-9]", "", header.strip().lower())


def extract_token_from_header(header: str) -> str:
    """'Value_IN(EURe)' -> 'EURe'. The generic placeholder '(x)' means no hint."""
    match = re.search(r"\(([^)]+)\)", header or "")
    if match:
        candidate = match.group(1).strip()
        if candidate and candidate.lower() != "x":
            return candidate
    return ""


# Containment matching ignores names shorter than this ("To" is inside "hisTOrical").
MIN_FUZZY_LENGTH = 3


def _cell(row: ParsedRow, header: str) -> ResolvedField:
    return ResolvedField(row[header], extract_token_from_header(header), header)


def _resolve_jointly(
    row: ParsedRow,
    fields: Sequence[Tuple[str, Sequence[str]]],
    exclude: Collection[str] = (),
) -> Dict[str, ResolvedField]:
    """
    Match (name, variants) pairs against the headers of one row. Each header
    is claimed by at most one field, and a pass runs over every field before
    the next pass starts:

    1) exact (case-sensitive) header match with a non-empty cell;
    2) normalized equality with a variant;
    3) header contains a variant, longest variants first;
    4) variant contains the header, shortest variants first.

    A header matched in 2) to 4) is claimed even when its cell is empty.
    """
    found: Dict[str, ResolvedField] = {}
    claimed = set(exclude)

    for name, variants in fields:
        for variant in variants:
            if variant not in claimed and row.get(variant):
                found[name] = _cell(row, variant)
                claimed.add(variant)
                break

    normalized_headers = [(header, normalize_header(header)) for header in row]
    candidates = [
        (name, nv)
        for name, variants in fields
        for nv in dict.fromkeys(normalize_header(v) for v in variants)
        if nv
    ]
    passes = (
        (lambda nh, nv: nh == nv, candidates),
        (
            lambda nh, nv: len(nv) >= MIN_FUZZY_LENGTH and nv in nh,
            sorted(candidates, key=lambda c: -len(c[1])),
        ),
        (
            lambda nh, nv: len(nh) >= MIN_FUZZY_LENGTH and nh in nv,
            sorted(candidates, key=lambda c: len(c[1])),
        ),
    )
    for matches, ordered in passes:
        for name, nv in ordered:
            if name in found:
                continue
            for header, nh in normalized_headers:
                if header not in claimed and nh and matches(nh, nv):
                    found[name] = _cell(row, header)
                    claimed.add(header)
                    break

    return {name: found.get(name, ResolvedField()) for name, _ in fields}


def resolve_field(
    row: ParsedRow,
    variants: Sequence[str],
    exclude: Collection[str] = (),
) -> ResolvedField:
    """Find the cell for one field on its own; headers in `exclude` are never matched."""
    return _resolve_jointly(row, [("field", variants)], exclude)["field"]


def _strip_hint(field_spec: FieldSpec, found: ResolvedField) -> ResolvedField:
    if found.token and not field_spec.token_hint:
        return ResolvedField(found.value, "", found.header)
    return found


def resolve(row: ParsedRow, field_name: str, exclude: Collection[str] = ()) -> ResolvedField:
    """Resolve a single canonical field from FIELD_SPECS; only token_hint fields keep header tokens."""
    field_spec = FIELD_SPECS[field_name]
    return _strip_hint(field_spec, resolve_field(row, field_spec.variants, exclude))


def resolve_row(row: ParsedRow) -> Dict[str, ResolvedField]:
    """
    Resolve every FIELD_SPECS field of a row at once.

    A header that is exactly one field's name ("amount", "token") goes to
    that field before any substring matching runs, so "amount" stays a
    Value_OUT column and "token" never becomes a contract address.
    """
    resolved = _resolve_jointly(row, [(fs.name, fs.variants) for fs in FIELD_SPECS.values()])
    return {name: _strip_hint(FIELD_SPECS[name], found) for name, found in resolved.items()}


_FLOAT_PREFIX = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def parse_amount(raw: Optional[str]) -> Optional[float]:
    """Read the leading number of a cell ('12.5 EURe' -> 12.5); None when there is none."""
    if raw is None:
        return None
    match = _FLOAT_PREFIX.match(raw.strip())
    if not match:
        return None
    try:
        return float(match.group(0))
    except ValueError:
        return None


def parse_positive_amount(raw: Optional[str]) -> Optional[float]:
    """Value fields: unparseable, zero or negative -> None."""
    amount = parse_amount(raw)
    if amount is None or not amount > 0:
        return None
    return amount


def parse_fee_amount(raw: Optional[str]) -> float:
    """Fee fields: unparseable -> 0."""
    return parse_amount(raw) or 0.0


_DATETIME = TypeAdapter(datetime)

# Formats pydantic does not understand, seen in older explorer exports.
_EXTRA_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
)


def format_iso(dt: datetime) -> str:
    """UTC ISO-8601 with milliseconds: 2024-01-15T10:30:00.000Z."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    """Best-effort datetime parsing; naive values are taken as UTC. None if unparseable."""
    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None
    if re.fullmatch(r"\d{9,11}", text):
        return datetime.fromtimestamp(int(text), tz=timezone.utc)
    try:
        dt = _DATETIME.validate_python(text)
    except ValidationError:
        dt = None
        for fmt in _EXTRA_FORMATS:
            try:
                dt = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_iso_timestamp(raw: Optional[str], fallback: str) -> str:
    dt = parse_timestamp(raw)
    return fallback if dt is None else format_iso(dt)
