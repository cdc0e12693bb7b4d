from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import date, datetime, timezone
from typing import Any, NamedTuple

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from payout_ledger.config import settings
from payout_ledger.errors import CommitError

logger = logging.getLogger(__name__)

UPSERT_PAYOUT_SQL = text(
    """
    INSERT INTO payout_records (
      shop_id, sales_line_id, order_id, sku, statement_date,
      settlement_amount, quantity, status, created_at, order_created_date
    )
    VALUES (
      :shop_id, :sales_line_id, :order_id, :sku, :statement_date,
      :settlement_amount, :quantity, :status, :created_at, :order_created_date
    )
    ON CONFLICT (order_id, sku)
    DO UPDATE SET
      shop_id = EXCLUDED.shop_id,
      sales_line_id = EXCLUDED.sales_line_id,
      statement_date = EXCLUDED.statement_date,
      settlement_amount = EXCLUDED.settlement_amount,
      quantity = EXCLUDED.quantity,
      status = EXCLUDED.status,
      order_created_date = EXCLUDED.order_created_date
    """
)

UPDATE_SALES_STATUS_SQL = text("UPDATE sales_records SET status = :status WHERE id = :sales_line_id")


class WritePlan(NamedTuple):
    writes: list[dict[str, Any]]
    weights: list[int]
    imported: int
    unchanged: int


class CommitResult(NamedTuple):
    imported: int
    unchanged: int
    status_updates: int


def as_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _payout_signature(row: dict[str, Any]) -> tuple:
    sales_line_id = row.get("sales_line_id")
    return (
        row["shop_id"],
        int(sales_line_id) if sales_line_id is not None else None,
        as_date(row.get("statement_date")),
        round(float(row.get("settlement_amount") or 0), 2),
        int(row.get("quantity") or 0),
        row.get("status") or "",
        as_date(row.get("order_created_date")),
    )


def plan_writes(
    existing: Iterable[dict[str, Any]],
    records: Iterable[dict[str, Any]],
    *,
    signature: Callable[[dict[str, Any]], tuple],
    to_params: Callable[[dict[str, Any]], dict[str, Any]],
) -> WritePlan:
    """Split records into upsert params and records already stored as-is.

    Records sharing an (order_id, sku) key collapse into one write, last one wins.
    Each write's weight is the number of imported records it stands for.
    """
    stored = {(row["order_id"], row["sku"]): signature(row) for row in existing}
    pending: dict[tuple[str, str], dict[str, Any]] = {}
    weights: dict[tuple[str, str], int] = {}
    imported = 0
    unchanged = 0

    for record in records:
        key = (record["order_id"], record["sku"])
        record_signature = signature(record)
        if stored.get(key) == record_signature:
            unchanged += 1
            continue
        stored[key] = record_signature
        imported += 1
        pending[key] = to_params(record)
        weights[key] = weights.get(key, 0) + 1

    return WritePlan(list(pending.values()), [weights[key] for key in pending], imported, unchanged)


def plan_payout_writes(
    existing: Iterable[dict[str, Any]],
    accepted: Iterable[dict[str, Any]],
) -> WritePlan:
    created_at = datetime.now(timezone.utc)

    def to_params(record: dict[str, Any]) -> dict[str, Any]:
        return {
            "shop_id": record["shop_id"],
            "sales_line_id": record["sales_line_id"],
            "order_id": record["order_id"],
            "sku": record["sku"],
            "statement_date": record["statement_date"],
            "settlement_amount": record["settlement_amount"],
            "quantity": record["quantity"],
            "status": record["status"],
            "created_at": record.get("created_at") or created_at,
            "order_created_date": record["order_created_date"],
        }

    return plan_writes(existing, accepted, signature=_payout_signature, to_params=to_params)


def plan_status_updates(
    updates: Iterable[dict[str, Any]],
    current_statuses: dict[int, str | None],
) -> list[dict[str, Any]]:
    latest: dict[int, str] = {}
    for update in updates:
        latest[update["sales_line_id"]] = update["status"]
    return [
        {"sales_line_id": sales_line_id, "status": status}
        for sales_line_id, status in latest.items()
        if current_statuses.get(sales_line_id) != status
    ]


def write_in_chunks(
    db: Session,
    statement,
    params: Sequence[dict[str, Any]],
    *,
    label: str,
    weights: Sequence[int] | None = None,
) -> int:
    """Execute `params` in committed chunks and return the records committed.

    Without `weights` every parameter row counts as one record.
    """
    committed = 0
    chunk_size = max(1, settings.import_chunk_size)
    for start in range(0, len(params), chunk_size):
        chunk = list(params[start : start + chunk_size])
        try:
            db.execute(statement, chunk)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Failed writing %s chunk starting at %d", label, start)
            raise CommitError(
                f"Could not save {label}: the store rejected the write after {committed} record(s) were committed.",
                committed=committed,
            ) from exc
        committed += sum(weights[start : start + chunk_size]) if weights is not None else len(chunk)
    return committed


def commit_payout_batch(
    db: Session,
    *,
    existing: Iterable[dict[str, Any]],
    accepted: Iterable[dict[str, Any]],
    status_updates: Iterable[dict[str, Any]],
    current_statuses: dict[int, str | None],
    dry_run: bool = False,
) -> CommitResult:
    plan = plan_payout_writes(existing, accepted)
    sales_updates = plan_status_updates(status_updates, current_statuses)

    if not dry_run:
        written = write_in_chunks(db, UPSERT_PAYOUT_SQL, plan.writes, label="payout lines", weights=plan.weights)
        try:
            write_in_chunks(db, UPDATE_SALES_STATUS_SQL, sales_updates, label="sales line statuses")
        except CommitError as exc:
            # Payout lines are already committed at this point.
            raise CommitError(str(exc), committed=written) from exc

    return CommitResult(imported=plan.imported, unchanged=plan.unchanged, status_updates=len(sales_updates))
