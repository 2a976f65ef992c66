"""CSV framing for transaction input and account output.

Rows are trimmed and decoded into the ``TransactionRecord`` variant one at a
time, so a replay never holds more than one input row in memory.
"""
import csv
import re
from typing import Dict, Iterable, Iterator, List, Optional, TextIO

from pydantic import TypeAdapter, ValidationError

import amounts
from exceptions import MissingAmountError, RecordParseError, UnknownTransactionTypeError
from models import FUNDS_TRANSACTION_TYPES, AccountSnapshot, TransactionRecord, TransactionType

INPUT_FIELDS = ("type", "client", "tx", "amount")
REQUIRED_INPUT_FIELDS = ("type", "client", "tx")
OUTPUT_FIELDS = ("client", "available", "held", "total", "locked")

_ID_PATTERN = re.compile(r"\d+", re.ASCII)

_record_adapter = TypeAdapter(TransactionRecord)


def read_transactions(stream: TextIO, delimiter: str = ",") -> Iterator[TransactionRecord]:
    """Lazily decode transaction records from CSV text with a header row."""
    reader = csv.reader(stream, delimiter=delimiter)
    header = _next_row(reader)
    if header is None:
        return
    columns = _column_positions(header)

    while True:
        row = _next_row(reader)
        if row is None:
            return
        if not any(field.strip() for field in row):
            continue
        try:
            yield parse_record(_select(row, columns))
        except RecordParseError as e:
            raise e.at_line(reader.line_num) from e.__cause__


def parse_record(fields: Dict[str, Optional[str]]) -> TransactionRecord:
    """Decode one flat row (column name -> raw text) into a typed record."""
    raw_type = (fields.get("type") or "").strip()
    try:
        kind = TransactionType(raw_type)
    except ValueError:
        raise UnknownTransactionTypeError(f"unknown transaction type {raw_type!r}") from None

    data = {
        "type": kind,
        "client": _parse_id(fields.get("client"), "client"),
        "tx": _parse_id(fields.get("tx"), "tx"),
    }

    if kind in FUNDS_TRANSACTION_TYPES:
        raw_amount = (fields.get("amount") or "").strip()
        if not raw_amount:
            raise MissingAmountError(f"{kind.value} {data['tx']} has no amount")
        data["amount"] = amounts.parse_amount(raw_amount)

    try:
        return _record_adapter.validate_python(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors()
        )
        raise RecordParseError(f"invalid {kind.value} record: {problems}") from e


def write_accounts(snapshots: Iterable[AccountSnapshot], stream: TextIO, delimiter: str = ",") -> int:
    """Write one CSV row per account. Returns the number of rows written."""
    writer = csv.writer(stream, delimiter=delimiter, lineterminator="\n")
    writer.writerow(OUTPUT_FIELDS)
    written = 0
    for snapshot in snapshots:
        writer.writerow([
            snapshot.client,
            amounts.format_amount(snapshot.available),
            amounts.format_amount(snapshot.held),
            amounts.format_amount(snapshot.total),
            str(snapshot.locked).lower(),
        ])
        written += 1
    return written


def _next_row(reader) -> Optional[List[str]]:
    try:
        return next(reader, None)
    except csv.Error as e:
        raise RecordParseError(str(e), reader.line_num) from e


def _column_positions(header) -> Dict[str, int]:
    positions = {name.strip().lower(): index for index, name in enumerate(header)}
    missing = [name for name in REQUIRED_INPUT_FIELDS if name not in positions]
    if missing:
        raise RecordParseError(f"header is missing column(s): {', '.join(missing)}", 1)
    return {name: positions[name] for name in INPUT_FIELDS if name in positions}


def _select(row, columns: Dict[str, int]) -> Dict[str, Optional[str]]:
    # Dispute rows commonly drop the trailing amount column altogether.
    return {name: row[index] if index < len(row) else None for name, index in columns.items()}


def _parse_id(raw: Optional[str], field: str) -> int:
    text = (raw or "").strip()
    if not _ID_PATTERN.fullmatch(text):
        raise RecordParseError(f"{field} must be an unsigned integer, got {raw!r}")
    return int(text)
