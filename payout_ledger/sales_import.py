from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import bindparam, text
from sqlalchemy.orm import Session

from payout_ledger.committer import as_date, plan_writes, write_in_chunks
from payout_ledger.config import settings
from payout_ledger.errors import CommitError, ImportAborted, RowError, StructuralError
from payout_ledger.header_locator import SALES_HEADER_TOKENS, find_column, locate_header
from payout_ledger.reconciliation import distinct_order_ids, fetch_by_order_ids, guard_cross_shop
from payout_ledger.report import ImportReport
from payout_ledger.row_normalizer import cell_at, to_amount, to_date, to_int, to_text
from payout_ledger.sheet_reader import Cell, is_row_populated, read_grid

logger = logging.getLogger(__name__)

STORED_SALES_SQL = text(
    """
    SELECT r.id, r.order_id, r.sku, r.shop_id, r.seller_sku, r.quantity, r.revenue,
           r.order_date, r.order_status, COALESCE(s.name, '') AS shop_name
    FROM sales_records r
    LEFT JOIN shops s ON s.id = r.shop_id
    WHERE r.order_id IN :order_ids
    ORDER BY r.id
    """
).bindparams(bindparam("order_ids", expanding=True))

UPSERT_SALES_SQL = text(
    """
    INSERT INTO sales_records (
      shop_id, order_id, sku, seller_sku, quantity, revenue,
      order_date, order_status, status, created_at
    )
    VALUES (
      :shop_id, :order_id, :sku, NULLIF(:seller_sku, ''), :quantity, :revenue,
      :order_date, NULLIF(:order_status, ''), 'pending', :created_at
    )
    ON CONFLICT (order_id, sku)
    DO UPDATE SET
      shop_id = EXCLUDED.shop_id,
      seller_sku = EXCLUDED.seller_sku,
      quantity = EXCLUDED.quantity,
      revenue = EXCLUDED.revenue,
      order_date = EXCLUDED.order_date,
      order_status = EXCLUDED.order_status
    """
)


def _sales_signature(row: dict[str, Any]) -> tuple:
    return (
        row["shop_id"],
        row.get("seller_sku") or "",
        int(row.get("quantity") or 0),
        round(float(row.get("revenue") or 0), 2),
        as_date(row.get("order_date")),
        row.get("order_status") or "",
    )


def normalize_sales_rows(
    rows: Sequence[Sequence[Cell]],
    columns: dict[str, int],
    *,
    shop_id: str,
    first_row_number: int,
) -> tuple[list[dict[str, Any]], list[RowError]]:
    order_col = find_column(columns, "order id")
    if order_col is None:
        raise StructuralError("order id column not found")
    sku_col = find_column(columns, "sku id", "sku")
    seller_sku_col = find_column(columns, "seller sku")
    quantity_col = find_column(columns, "quantity")
    amount_col = find_column(columns, "order amount")
    status_col = find_column(columns, "order status")
    created_col = find_column(columns, "created time", "created date")

    records: list[dict[str, Any]] = []
    skipped: list[RowError] = []
    for offset, row in enumerate(rows):
        row_number = first_row_number + offset
        order_id = to_text(cell_at(row, order_col))
        if not order_id:
            skipped.append(RowError(row_number, "missing order id"))
            continue
        records.append(
            {
                "row": row_number,
                "shop_id": shop_id,
                "order_id": order_id,
                "sku": to_text(cell_at(row, sku_col)),
                "seller_sku": to_text(cell_at(row, seller_sku_col)),
                "quantity": to_int(cell_at(row, quantity_col)),
                "revenue": to_amount(cell_at(row, amount_col)),
                "order_date": to_date(cell_at(row, created_col)),
                "order_status": to_text(cell_at(row, status_col)),
            }
        )
    return records, skipped


def import_sales_workbook(
    db: Session,
    *,
    content: bytes,
    shop_id: str,
    dry_run: bool = False,
) -> ImportReport:
    total = 0
    try:
        grid = read_grid(content)
        header_idx, columns = locate_header(
            grid, SALES_HEADER_TOKENS, scan_rows=settings.header_scan_rows, required=SALES_HEADER_TOKENS
        )
        data_rows = grid[header_idx + 1 :]
        if not any(is_row_populated(row) for row in data_rows):
            raise StructuralError("no data rows below the header")
        total = len(data_rows)

        records, skipped = normalize_sales_rows(
            data_rows,
            columns,
            shop_id=shop_id,
            first_row_number=header_idx + 2,
        )
        existing = fetch_by_order_ids(db, STORED_SALES_SQL, distinct_order_ids(records))
        guard_cross_shop(existing, shop_id, ledger="sales")
    except ImportAborted as exc:
        logger.warning("Sales import for shop %s aborted: %s", shop_id, exc)
        return ImportReport.abort(str(exc), total=total, dry_run=dry_run)

    created_at = datetime.now(timezone.utc)
    plan = plan_writes(
        existing,
        records,
        signature=_sales_signature,
        to_params=lambda r: {k: v for k, v in r.items() if k != "row"} | {"created_at": created_at},
    )

    report = ImportReport(total=total, dry_run=dry_run)
    report.add_row_errors(skipped)
    if not dry_run:
        try:
            write_in_chunks(db, UPSERT_SALES_SQL, plan.writes, label="sales lines", weights=plan.weights)
        except CommitError as exc:
            report.imported = exc.committed
            report.failed = True
            report.errors.append(str(exc))
            return report

    report.imported = plan.imported
    report.unchanged = plan.unchanged
    logger.info(
        "Sales import for shop %s: %d scanned, %d imported, %d unchanged, %d skipped%s",
        shop_id,
        report.total,
        report.imported,
        report.unchanged,
        report.skipped,
        " (preview)" if dry_run else "",
    )
    return report
