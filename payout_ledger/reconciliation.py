from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any

from sqlalchemy import bindparam, text
from sqlalchemy.orm import Session

from payout_ledger.config import settings
from payout_ledger.errors import ConflictError, RowError

logger = logging.getLogger(__name__)

EXISTING_PAYOUTS_SQL = text(
    """
    SELECT p.id, p.order_id, p.sku, p.shop_id, p.sales_line_id, p.statement_date,
           p.settlement_amount, p.quantity, p.status, p.order_created_date,
           COALESCE(s.name, '') AS shop_name
    FROM payout_records p
    LEFT JOIN shops s ON s.id = p.shop_id
    WHERE p.order_id IN :order_ids
    ORDER BY p.id
    """
).bindparams(bindparam("order_ids", expanding=True))

EXISTING_SALES_SQL = text(
    """
    SELECT r.id, r.order_id, r.sku, r.shop_id, r.status, r.order_status,
           COALESCE(s.name, '') AS shop_name
    FROM sales_records r
    LEFT JOIN shops s ON s.id = r.shop_id
    WHERE r.order_id IN :order_ids
    ORDER BY r.id
    """
).bindparams(bindparam("order_ids", expanding=True))


def distinct_order_ids(records: Iterable[dict[str, Any]]) -> list[str]:
    return list(dict.fromkeys(r["order_id"] for r in records))


def sku_key(order_id: str, sku: str | None) -> tuple[str, str]:
    return order_id, (sku or "").strip().lower()


def fetch_by_order_ids(db: Session, statement, order_ids: Sequence[str]) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    chunk_size = max(1, settings.lookup_chunk_size)
    for start in range(0, len(order_ids), chunk_size):
        chunk = list(order_ids[start : start + chunk_size])
        rows.extend(dict(r) for r in db.execute(statement, {"order_ids": chunk}).mappings().all())
    return rows


def guard_cross_shop(
    existing: Iterable[dict[str, Any]],
    shop_id: str,
    *,
    ledger: str,
) -> None:
    for row in existing:
        if row["shop_id"] != shop_id:
            shop_name = row.get("shop_name") or "Unknown Shop"
            logger.warning(
                "Order %s already belongs to shop %s in %s; target shop %s",
                row["order_id"],
                row["shop_id"],
                ledger,
                shop_id,
            )
            raise ConflictError(
                f'Order {row["order_id"]} already exists in {ledger} for shop "{shop_name}"; '
                "it cannot be moved to the selected shop."
            )


def load_existing_payouts(db: Session, shop_id: str, order_ids: Sequence[str]) -> list[dict[str, Any]]:
    """Fetch stored payout lines for the batch and refuse the batch if any belongs to another shop."""
    existing = fetch_by_order_ids(db, EXISTING_PAYOUTS_SQL, order_ids)
    guard_cross_shop(existing, shop_id, ledger="payouts")
    return existing


def build_sales_index(sales_lines: Iterable[dict[str, Any]]) -> dict[tuple[str, str], dict[str, Any]]:
    return {sku_key(line["order_id"], line["sku"]): line for line in sales_lines}


def match_payouts(
    records: Iterable[dict[str, Any]],
    sales_index: dict[tuple[str, str], dict[str, Any]],
) -> tuple[list[dict[str, Any]], list[dict[str, Any]], list[RowError]]:
    accepted: list[dict[str, Any]] = []
    status_updates: list[dict[str, Any]] = []
    errors: list[RowError] = []

    for record in records:
        sales_line = sales_index.get(sku_key(record["order_id"], record["sku"]))
        if sales_line is None:
            errors.append(
                RowError(
                    record.get("row"),
                    f"order {record['order_id']} (sku {record['sku'] or '-'}) not found in sales ledger",
                )
            )
            continue

        if sales_line["shop_id"] != record["shop_id"]:
            errors.append(RowError(record.get("row"), f"shop mismatch for order {record['order_id']}"))
            continue

        accepted.append({**record, "sales_line_id": sales_line["id"]})
        if sales_line["status"] != record["status"]:
            status_updates.append({"sales_line_id": sales_line["id"], "status": record["status"]})

    return accepted, status_updates, errors
