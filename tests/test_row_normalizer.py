from datetime import date, datetime

import pytest

from payout_ledger.errors import RowError, StructuralError
from payout_ledger.row_normalizer import (
    FillState,
    fold_payout_row,
    normalize_payout_rows,
    payout_columns,
    to_amount,
    to_date,
    to_datetime,
    to_int,
    to_text,
)
from payout_ledger.sheet_reader import to_cell

COLUMNS = payout_columns(
    {
        "order/adjustment id": 0,
        "sku id": 1,
        "statement date": 2,
        "total settlement amount": 3,
        "quantity": 4,
        "status": 5,
    }
)


def _row(*values):
    return [to_cell(v) for v in values]


def test_fill_down_inherits_order_id_and_statement_date():
    rows = [
        _row("123", "SKU1", 45292, 100, 1, "paid"),
        _row("", "", "", 50, "", ""),
    ]

    records, skipped = normalize_payout_rows(rows, COLUMNS, shop_id="shop-a", first_row_number=2)

    assert skipped == []
    assert [r["order_id"] for r in records] == ["123", "123"]
    assert records[0]["statement_date"] == date(2024, 1, 1)
    assert records[1]["statement_date"] == date(2024, 1, 1)
    assert records[1]["settlement_amount"] == 50.0
    assert records[1]["row"] == 3


def test_blank_row_is_skipped_not_inherited():
    rows = [
        _row("123", "SKU1", 45292, 100, 1, "paid"),
        _row(None, None, None, None, None, None),
        _row("", "", "", "", 2, "paid"),
    ]

    records, skipped = normalize_payout_rows(rows, COLUMNS, shop_id="shop-a", first_row_number=5)

    assert len(records) == 1
    assert skipped == [RowError(6, "missing order id"), RowError(7, "missing order id")]
    assert str(skipped[0]) == "Row 6: missing order id"


def test_statement_date_is_only_inherited_within_the_same_order():
    rows = [
        _row("A1", "SKU1", "2024-03-05", 10, 1, ""),
        _row("A1", "SKU2", None, 20, 1, ""),
        _row("B2", "SKU3", None, 30, 1, ""),
    ]

    records, _ = normalize_payout_rows(rows, COLUMNS, shop_id="shop-a", first_row_number=2)

    assert records[1]["statement_date"] == date(2024, 3, 5)
    assert records[2]["statement_date"] is None


def test_fold_payout_row_leaves_state_untouched_on_skip():
    state = FillState("123", date(2024, 1, 1))

    new_state, record, error = fold_payout_row(
        state,
        _row(None, None, None, None, None, None),
        COLUMNS,
        row_number=9,
        shop_id="shop-a",
    )

    assert new_state == state
    assert record is None
    assert error == RowError(9, "missing order id")


def test_fold_payout_row_continuation_by_sku_only():
    state = FillState("123", date(2024, 1, 1))

    new_state, record, error = fold_payout_row(
        state,
        _row(None, "SKU9", None, None, None, None),
        COLUMNS,
        row_number=4,
        shop_id="shop-a",
    )

    assert error is None
    assert record["order_id"] == "123"
    assert record["sku"] == "SKU9"
    assert record["settlement_amount"] == 0.0
    assert record["quantity"] == 0
    assert record["status"] == "paid"
    assert new_state == FillState("123", date(2024, 1, 1))


def test_serial_and_text_dates_normalize_to_the_same_value():
    assert to_date(to_cell(45292)) == date(2024, 1, 1)
    assert to_date(to_cell(25569)) == date(1970, 1, 1)
    assert to_date(to_cell("2024-01-01")) == date(2024, 1, 1)
    assert to_date(to_cell("2024/01/01")) == date(2024, 1, 1)
    assert to_date(to_cell("2024/1/1 13:45:00")) == date(2024, 1, 1)
    assert to_date(to_cell(datetime(2024, 1, 1, 8, 30))) == date(2024, 1, 1)


def test_fractional_serials_are_not_dates():
    assert to_date(to_cell(0)) is None
    assert to_date(to_cell(0.5)) is None
    assert to_datetime(to_cell(0.25)) is None

    rows = [
        _row("A1", "SKU1", 45292, 10, 1, ""),
        _row("A1", "SKU2", 0, 20, 1, ""),
        _row("A1", "SKU3", 0.5, 30, 1, ""),
    ]
    records, skipped = normalize_payout_rows(rows, COLUMNS, shop_id="shop-a", first_row_number=2)

    assert skipped == []
    assert [r["statement_date"] for r in records] == [date(2024, 1, 1)] * 3


def test_text_dates_fall_back_to_known_formats():
    assert to_datetime(to_cell("01/25/2026 10:29:04 PM")) == datetime(2026, 1, 25, 22, 29, 4)
    assert to_date(to_cell("25/01/2026")) == date(2026, 1, 25)
    assert to_date(to_cell("5 Mar 2024")) == date(2024, 3, 5)
    assert to_date(to_cell("not a date")) is None
    assert to_date(to_cell("2024-13-45")) is None
    assert to_date(to_cell(None)) is None


def test_amount_and_quantity_coercion():
    assert to_amount(to_cell("₫1,234.50")) == pytest.approx(1234.5)
    assert to_amount(to_cell("$ -12.00")) == pytest.approx(-12.0)
    assert to_amount(to_cell("(7.25)")) == pytest.approx(-7.25)
    assert to_amount(to_cell("n/a")) == 0.0
    assert to_amount(to_cell(None)) == 0.0
    assert to_amount(to_cell(99)) == 99.0
    assert to_int(to_cell("3")) == 3
    assert to_int(to_cell(2.0)) == 2
    assert to_int(to_cell("")) == 0
    assert to_int(to_cell("abc")) == 0


def test_identifiers_are_trimmed_text():
    assert to_text(to_cell("  577001  ")) == "577001"
    assert to_text(to_cell(577001.0)) == "577001"
    assert to_text(to_cell("577001.0")) == "577001"
    assert to_text(to_cell(None)) == ""


def test_payout_columns_require_an_order_id_column():
    with pytest.raises(StructuralError):
        payout_columns({"statement date": 0, "total settlement amount": 1})


def test_payout_columns_accept_plain_order_id_alias():
    columns = payout_columns({"order id": 3, "sku": 1})

    assert columns.order_id == 3
    assert columns.sku == 1
    assert columns.statement_date is None
