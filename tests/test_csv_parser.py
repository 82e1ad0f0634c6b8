from __future__ import annotations

import asyncio
import textwrap

import pytest

from spendlens.errors import UnrecognizedFormatError
from spendlens.ingest.csv_parser import CsvParser, parse_csv_text
from spendlens.ingest.utils import read_csv_rows
from spendlens.models import ParsedTransaction


def _dedent(s: str) -> str:
    return textwrap.dedent(s).lstrip("\n")


GENERIC_CSV = _dedent(
    """
    Date,Description,Amount
    01/05/2024,Coffee Shop,-4.50
    01/06/2024,Paycheck,2000.00
    01/07/2024,Grocery,abc
    01/08/2024,Gas Station,-30.00
    01/09/2024,Book Store,-12.00
    """
)

AMEX_HEADER = [
    "Date",
    "Description",
    "Card Member",
    "Account #",
    "Amount",
    "Extended Details",
    "Appears On Your Statement As",
    "Address",
    "City/State",
    "Zip Code",
    "Country",
    "Reference",
    "Category",
]


def _amex_row(date: str, merchant: str, amount: str, appears_as: str = "") -> list[str]:
    row = [""] * len(AMEX_HEADER)
    row[0], row[1], row[4], row[6] = date, merchant, amount, appears_as
    row[11] = "320252410422442649"
    return row


# ---- Row-level behavior ------------------------------------------------------


def test_bad_amount_is_isolated_to_its_row():
    result = parse_csv_text(GENERIC_CSV)

    assert result.detected_format == "generic"
    assert result.total_rows == 5
    assert result.success_count == 4
    assert result.error_count == 1

    (err,) = result.errors
    assert err.row == 4  # header is row 1
    assert err.column == "amount"
    assert err.raw == {"Date": "01/07/2024", "Description": "Grocery", "Amount": "abc"}

    merchants = [t.merchant for t in result.transactions]
    assert merchants == ["Coffee Shop", "Paycheck", "Gas Station", "Book Store"]


def test_signed_amounts_decide_type_and_unsigned_defaults_to_income():
    result = parse_csv_text(GENERIC_CSV)
    coffee, paycheck = result.transactions[:2]

    assert coffee == ParsedTransaction(
        date="2024-01-05",
        amount_cents=-450,
        merchant="Coffee Shop",
        description="Coffee Shop",
        transaction_type="expense",
    )
    assert paycheck.amount_cents == 200000
    assert paycheck.transaction_type == "income"


def test_amex_sign_is_inverted():
    rows = [
        AMEX_HEADER,
        _amex_row("08/29/2025", "UBER", "11.18", "Uber Trip help.uber.com CA"),
        _amex_row("08/30/2025", "AMAZON.COM", "-25.00"),
    ]
    result = CsvParser().parse_rows(rows)

    assert result.detected_format == "amex"
    charge, refund = result.transactions
    assert (charge.amount_cents, charge.transaction_type) == (-1118, "expense")
    assert charge.description == "Uber Trip help.uber.com CA"
    assert (refund.amount_cents, refund.transaction_type) == (2500, "income")
    assert refund.description is None


def test_type_column_overrides_sign():
    csv_text = _dedent(
        """
        Transaction Date,Post Date,Description,Category,Type,Amount,Memo
        01/03/2024,01/04/2024,STARBUCKS #1234,Food & Drink,Sale,-12.34,
        01/05/2024,01/05/2024,AUTOMATIC PAYMENT - THANK,,Payment,500.00,
        01/06/2024,01/07/2024,TARGET,Shopping,Return,5.00,
        01/08/2024,01/08/2024,LATE FEE,Fees,Fee,9.00,
        """
    )
    result = parse_csv_text(csv_text)

    assert result.detected_format == "chase-credit"
    got = [(t.merchant, t.amount_cents, t.transaction_type) for t in result.transactions]
    assert got == [
        ("STARBUCKS #1234", -1234, "expense"),
        ("AUTOMATIC PAYMENT - THANK", 50000, "transfer"),
        ("TARGET", 500, "income"),
        ("LATE FEE", -900, "expense"),
    ]


def test_split_debit_credit_columns():
    csv_text = _dedent(
        """
        Transaction Date,Posted Date,Card No.,Description,Category,Debit,Credit
        2024-01-15,2024-01-16,1234,SHELL OIL 5744,Gas/Automotive,25.00,
        2024-01-17,2024-01-17,1234,CAPITAL ONE MOBILE PYMT,Payment/Credit,,100.00
        2024-01-18,2024-01-18,1234,EMPTY ROW,Other,,
        """
    )
    result = parse_csv_text(csv_text)

    assert result.detected_format == "capital-one"
    assert [(t.amount_cents, t.transaction_type) for t in result.transactions] == [
        (-2500, "expense"),
        (10000, "income"),
    ]
    (err,) = result.errors
    assert (err.row, err.column) == (4, "amount")


def test_bad_date_and_missing_merchant_name_their_columns():
    csv_text = _dedent(
        """
        Date,Payee,Description,Amount
        13/45/2024,Cafe,,-1.00
        01/02/2024,,,-2.00
        01/03/2024,,Wire in,3.00
        01/04/2024
        """
    )
    result = parse_csv_text(csv_text)

    assert [(e.row, e.column) for e in result.errors] == [
        (2, "date"),
        (3, "merchant"),
        (5, "amount"),
    ]
    (tx,) = result.transactions
    assert tx.merchant == "Wire in"


def test_blank_rows_are_skipped_but_row_numbers_stay_physical():
    csv_text = "Date,Payee,Amount\n01/02/2024,Cafe,-1.00\n,,\n99/99/2024,Cafe,-1.00\n"
    result = parse_csv_text(csv_text)

    assert result.total_rows == 2
    assert result.success_count == 1
    assert result.errors[0].row == 4


def test_preamble_before_header():
    csv_text = "Account: 1234\n\nDate,Payee,Amount\n01/02/2024,Cafe,-1.00\nbad,Cafe,-1.00\n"
    result = parse_csv_text(csv_text)

    assert result.total_rows == 2
    assert result.errors[0].row == 5


def test_byte_order_mark_is_ignored():
    result = parse_csv_text("\ufeffDate,Payee,Amount\n01/02/2024,Cafe,-1.00\n")
    assert result.success_count == 1


def test_unrecognized_header_aborts_the_file():
    with pytest.raises(UnrecognizedFormatError):
        parse_csv_text("Foo,Bar\n1,2\n")


def test_day_first_generic_file():
    csv_text = "Date,Payee,Amount\n03/01/2024,Cafe,-1.00\n25/12/2024,Shop,-2.00\n"
    result = parse_csv_text(csv_text)
    assert [t.date for t in result.transactions] == ["2024-01-03", "2024-12-25"]


def test_day_first_decided_by_a_late_row():
    early = [f"{d:02d}/01/2024,Shop {d},-1.00" for d in range(1, 13)]
    csv_text = "Date,Payee,Amount\n" + "\n".join([*early, "25/01/2024,Late Shop,-2.00"]) + "\n"

    result = parse_csv_text(csv_text)

    assert result.error_count == 0
    assert result.transactions[1].date == "2024-01-02"
    assert result.transactions[-1].date == "2024-01-25"


# ---- Chunking ----------------------------------------------------------------


def test_async_parse_matches_sync_parse():
    rows = read_csv_rows(GENERIC_CSV)
    parser = CsvParser(chunk_size=2)

    sync_result = parser.parse_rows(rows)
    async_result = asyncio.run(parser.aparse_rows(rows))

    assert async_result == sync_result


def test_chunk_size_must_be_positive():
    with pytest.raises(ValueError):
        CsvParser(chunk_size=0)
