from __future__ import annotations

from collections.abc import Iterable, Sequence

from payout_ledger.errors import StructuralError
from payout_ledger.sheet_reader import TEXT, Cell

PAYOUT_HEADER_TOKENS = (
    "order/adjustment id",
    "order id",
    "statement date",
    "total settlement amount",
)
SALES_HEADER_TOKENS = ("order id",)
ORDER_ID_COLUMNS = ("order/adjustment id", "order id")


def _header_name(cell: Cell) -> str:
    return " ".join(str(cell).split()).lower()


def locate_header(
    grid: Sequence[Sequence[Cell]],
    tokens: Iterable[str],
    *,
    scan_rows: int = 50,
    required: Iterable[str] = (),
) -> tuple[int, dict[str, int]]:
    """Return the first row within the scan window that names any header token.

    When `required` names columns, candidate rows holding none of them are
    passed over, so a preamble line such as "Statement date: ..." does not
    shadow the real header further down.
    """
    wanted = [t.strip().lower() for t in tokens if t.strip()]
    needed = [r.strip().lower() for r in required if r.strip()]
    for row_idx, row in enumerate(grid[: min(scan_rows, len(grid))]):
        signature = " ".join(_header_name(c) for c in row if c.kind == TEXT)
        if not any(token in signature for token in wanted):
            continue

        columns: dict[str, int] = {}
        for col_idx, cell in enumerate(row):
            if cell.kind != TEXT:
                continue
            name = _header_name(cell)
            if name and name not in columns:
                columns[name] = col_idx
        if needed and find_column(columns, *needed) is None:
            continue
        return row_idx, columns

    raise StructuralError("header not found")


def find_column(columns: dict[str, int], *aliases: str) -> int | None:
    for alias in aliases:
        index = columns.get(alias)
        if index is not None:
            return index
    return None
