from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import date, datetime
from typing import Any, NamedTuple

from openpyxl.utils.datetime import from_excel

from payout_ledger.errors import RowError, StructuralError
from payout_ledger.header_locator import ORDER_ID_COLUMNS, find_column
from payout_ledger.sheet_reader import DATE, EMPTY_CELL, NUMBER, TEXT, Cell

DEFAULT_PAYOUT_STATUS = "paid"

ISO_LIKE_DATE = re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})(?:[ T](\d{1,2}):(\d{2})(?::(\d{2}))?)?")
TEXT_DATE_FORMATS = (
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d %b %Y",
    "%b %d, %Y",
    "%b %d %Y",
)
NON_NUMERIC = re.compile(r"[^0-9.\-]")


def to_text(cell: Cell) -> str:
    raw = str(cell).strip()
    if cell.kind == TEXT and raw.endswith(".0") and raw[:-2].isdigit():
        return raw[:-2]
    return raw


def to_datetime(cell: Cell) -> datetime | None:
    if cell.kind == DATE:
        return cell.value
    if cell.kind == NUMBER:
        try:
            converted = from_excel(cell.value)
        except (ValueError, OverflowError, TypeError):
            return None
        # Serials below 1 decode to a time of day, not a calendar date.
        return converted if isinstance(converted, datetime) else None
    if cell.kind != TEXT:
        return None

    raw = cell.value.strip()
    match = ISO_LIKE_DATE.match(raw)
    if match:
        year, month, day, hour, minute, second = match.groups()
        try:
            return datetime(
                int(year),
                int(month),
                int(day),
                int(hour or 0),
                int(minute or 0),
                int(second or 0),
            )
        except ValueError:
            return None

    for fmt in TEXT_DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue
    return None


def to_date(cell: Cell) -> date | None:
    parsed = to_datetime(cell)
    return parsed.date() if parsed is not None else None


def to_amount(cell: Cell, default: float = 0.0) -> float:
    if cell.kind == NUMBER:
        return float(cell.value)
    if cell.kind != TEXT:
        return default
    raw = cell.value.strip()
    negative = raw.startswith("(") and raw.endswith(")")
    cleaned = NON_NUMERIC.sub("", raw)
    try:
        value = float(cleaned)
    except ValueError:
        return default
    return -abs(value) if negative else value


def to_int(cell: Cell, default: int = 0) -> int:
    if cell.kind == NUMBER:
        return int(cell.value)
    if cell.kind != TEXT:
        return default
    try:
        return int(float(NON_NUMERIC.sub("", cell.value)))
    except ValueError:
        return default


def cell_at(row: Sequence[Cell], index: int | None) -> Cell:
    if index is None or index >= len(row):
        return EMPTY_CELL
    return row[index]


class FillState(NamedTuple):
    last_order_id: str = ""
    last_statement_date: date | None = None


class PayoutColumns(NamedTuple):
    order_id: int
    sku: int | None
    statement_date: int | None
    amount: int | None
    quantity: int | None
    status: int | None
    created: int | None
    order_created: int | None


def payout_columns(columns: dict[str, int]) -> PayoutColumns:
    order_id = find_column(columns, *ORDER_ID_COLUMNS)
    if order_id is None:
        raise StructuralError("order id column not found")
    return PayoutColumns(
        order_id=order_id,
        sku=find_column(columns, "sku id", "sku"),
        statement_date=find_column(columns, "statement date"),
        amount=find_column(columns, "total settlement amount"),
        quantity=find_column(columns, "quantity"),
        status=find_column(columns, "status"),
        created=find_column(columns, "created time", "created date"),
        order_created=find_column(columns, "order created date", "order created time"),
    )


def fold_payout_row(
    state: FillState,
    row: Sequence[Cell],
    columns: PayoutColumns,
    *,
    row_number: int,
    shop_id: str,
) -> tuple[FillState, dict[str, Any] | None, RowError | None]:
    """Normalize one payout row given the state left by the rows above it.

    Rows without an order id continue the previous order only when they still
    carry an amount or a sku (merged cells in the export); otherwise they are gaps.
    """
    order_id = to_text(cell_at(row, columns.order_id))
    amount_cell = cell_at(row, columns.amount)
    sku_cell = cell_at(row, columns.sku)

    if not order_id and (not amount_cell.is_empty or not sku_cell.is_empty):
        order_id = state.last_order_id
    if not order_id:
        return state, None, RowError(row_number, "missing order id")

    statement_date = to_date(cell_at(row, columns.statement_date))
    if statement_date is None and order_id == state.last_order_id:
        statement_date = state.last_statement_date

    order_created = to_date(cell_at(row, columns.order_created))
    record = {
        "row": row_number,
        "shop_id": shop_id,
        "order_id": order_id,
        "sku": to_text(sku_cell),
        "statement_date": statement_date,
        "quantity": to_int(cell_at(row, columns.quantity)),
        "settlement_amount": to_amount(amount_cell),
        "status": to_text(cell_at(row, columns.status)) or DEFAULT_PAYOUT_STATUS,
        "created_at": to_datetime(cell_at(row, columns.created)),
        "order_created_date": order_created,
    }
    return FillState(order_id, statement_date), record, None


def normalize_payout_rows(
    rows: Sequence[Sequence[Cell]],
    columns: PayoutColumns,
    *,
    shop_id: str,
    first_row_number: int,
) -> tuple[list[dict[str, Any]], list[RowError]]:
    records: list[dict[str, Any]] = []
    skipped: list[RowError] = []
    state = FillState()
    for offset, row in enumerate(rows):
        state, record, error = fold_payout_row(
            state,
            row,
            columns,
            row_number=first_row_number + offset,
            shop_id=shop_id,
        )
        if error is not None:
            skipped.append(error)
        else:
            records.append(record)
    return records, skipped
