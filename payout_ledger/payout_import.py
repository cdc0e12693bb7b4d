from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from payout_ledger.committer import commit_payout_batch
from payout_ledger.config import settings
from payout_ledger.errors import CommitError, ImportAborted, StructuralError
from payout_ledger.header_locator import ORDER_ID_COLUMNS, PAYOUT_HEADER_TOKENS, locate_header
from payout_ledger.reconciliation import (
    EXISTING_SALES_SQL,
    build_sales_index,
    distinct_order_ids,
    fetch_by_order_ids,
    load_existing_payouts,
    match_payouts,
)
from payout_ledger.report import ImportReport
from payout_ledger.row_normalizer import normalize_payout_rows, payout_columns
from payout_ledger.sheet_reader import is_row_populated, read_grid

logger = logging.getLogger(__name__)


def import_payout_workbook(
    db: Session,
    *,
    content: bytes,
    shop_id: str,
    dry_run: bool = False,
) -> ImportReport:
    """Reconcile a payout/settlement export against the sales ledger of one shop.

    Structural problems and cross-shop collisions abort the batch before anything
    is written. Rows that cannot be matched are reported and skipped while the
    remaining rows are still committed.
    """
    total = 0
    try:
        grid = read_grid(content)
        header_idx, columns = locate_header(
            grid, PAYOUT_HEADER_TOKENS, scan_rows=settings.header_scan_rows, required=ORDER_ID_COLUMNS
        )
        data_rows = grid[header_idx + 1 :]
        if not any(is_row_populated(row) for row in data_rows):
            raise StructuralError("no data rows below the header")
        total = len(data_rows)

        records, skipped = normalize_payout_rows(
            data_rows,
            payout_columns(columns),
            shop_id=shop_id,
            first_row_number=header_idx + 2,
        )
        order_ids = distinct_order_ids(records)
        existing = load_existing_payouts(db, shop_id, order_ids)
    except ImportAborted as exc:
        logger.warning("Payout import for shop %s aborted: %s", shop_id, exc)
        return ImportReport.abort(str(exc), total=total, dry_run=dry_run)

    sales_lines = fetch_by_order_ids(db, EXISTING_SALES_SQL, order_ids)
    accepted, status_updates, row_errors = match_payouts(records, build_sales_index(sales_lines))

    report = ImportReport(total=total, dry_run=dry_run)
    report.add_row_errors(skipped, row_errors)

    try:
        result = commit_payout_batch(
            db,
            existing=existing,
            accepted=accepted,
            status_updates=status_updates,
            current_statuses={line["id"]: line["status"] for line in sales_lines},
            dry_run=dry_run,
        )
    except CommitError as exc:
        report.imported = exc.committed
        report.failed = True
        report.errors.append(str(exc))
        return report

    report.imported = result.imported
    report.unchanged = result.unchanged
    report.status_updates = result.status_updates
    logger.info(
        "Payout import for shop %s: %d scanned, %d imported, %d unchanged, %d skipped%s",
        shop_id,
        report.total,
        report.imported,
        report.unchanged,
        report.skipped,
        " (preview)" if dry_run else "",
    )
    return report
