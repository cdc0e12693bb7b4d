from __future__ import annotations

import logging
from datetime import date, datetime, time
from io import BytesIO
from typing import Any, NamedTuple

from openpyxl import load_workbook

from payout_ledger.errors import StructuralError

logger = logging.getLogger(__name__)

NUMBER = "number"
TEXT = "text"
DATE = "date"
EMPTY = "empty"


class Cell(NamedTuple):
    kind: str
    value: Any = None

    @property
    def is_empty(self) -> bool:
        return self.kind == EMPTY

    def __str__(self) -> str:
        if self.kind == EMPTY:
            return ""
        if self.kind == NUMBER and float(self.value).is_integer():
            return str(int(self.value))
        return str(self.value)


EMPTY_CELL = Cell(EMPTY)


def to_cell(value: Any) -> Cell:
    if value is None:
        return EMPTY_CELL
    if isinstance(value, bool):
        return Cell(NUMBER, int(value))
    if isinstance(value, (int, float)):
        return Cell(NUMBER, value)
    if isinstance(value, datetime):
        return Cell(DATE, value)
    if isinstance(value, date):
        return Cell(DATE, datetime.combine(value, time.min))
    if isinstance(value, time):
        # Time-only cells carry no calendar date.
        return Cell(TEXT, value.isoformat())
    raw = str(value).replace("\xa0", " ")
    if not raw.strip():
        return EMPTY_CELL
    return Cell(TEXT, raw)


def read_grid(content: bytes) -> list[list[Cell]]:
    """Decode the first worksheet of an xlsx/xlsm payload into a rectangular grid.

    The worksheet's declared dimension is discarded: exports routinely declare a
    smaller range than they hold, so the extent is taken from the cells that
    actually carry a value.
    """
    try:
        workbook = load_workbook(BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:
        logger.warning("Could not open workbook: %s", exc)
        raise StructuralError("unreadable file") from exc

    try:
        if not workbook.sheetnames:
            raise StructuralError("unreadable file")
        sheet = workbook[workbook.sheetnames[0]]
        sheet.reset_dimensions()

        raw_rows: list[list[Cell]] = []
        max_row = 0
        max_col = 0
        for row_idx, values in enumerate(sheet.iter_rows(values_only=True), start=1):
            cells = [to_cell(v) for v in values]
            raw_rows.append(cells)
            for col_idx, cell in enumerate(cells, start=1):
                if not cell.is_empty:
                    max_row = row_idx
                    max_col = max(max_col, col_idx)
    except StructuralError:
        raise
    except Exception as exc:
        logger.warning("Could not read worksheet: %s", exc)
        raise StructuralError("unreadable file") from exc
    finally:
        workbook.close()

    grid: list[list[Cell]] = []
    for cells in raw_rows[:max_row]:
        row = cells[:max_col]
        row.extend([EMPTY_CELL] * (max_col - len(row)))
        grid.append(row)
    logger.debug("Read grid of %d rows x %d columns", max_row, max_col)
    return grid


def is_row_populated(row: list[Cell]) -> bool:
    return any(not cell.is_empty for cell in row)
