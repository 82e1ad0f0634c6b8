"""CSV parser: apply a detected profile row by row.

Each non-blank data row becomes either a :class:`ParsedTransaction` or a
:class:`ParseError`; a bad row never aborts the file. Row numbers are
physical (the header is row 1, or later when a preamble precedes it).

Amount and type resolution, in order:

1. A non-blank ``amount`` cell is parsed as a single signed amount. Profiles
   with ``invert_sign`` flip it first. A recognized ``type`` label then decides
   the type (expense forces a negative amount, income a positive one,
   transfer keeps the sign as written). Otherwise an explicit sign decides,
   and an unsigned amount takes the profile's ``unsigned_type`` (income when
   unset).
2. Otherwise separate ``debit``/``credit`` cells are used: a populated debit
   is an expense (negative), a populated credit is income (positive).

Large inputs are processed in fixed-size chunks. :meth:`CsvParser.aparse_rows`
yields to the event loop between chunks; both entry points produce the same
result.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from ..errors import RowParseError
from ..logging_setup import get_logger
from ..models import ParsedTransaction, ParseError, ParseResult, TransactionType
from ..normalizers import (
    ParsedAmount,
    classify_type_label,
    clean_text,
    parse_amount,
    parse_date,
)
from .detect import FormatDetector, FormatMatch
from .profiles import BankProfile, ColumnField
from .utils import is_blank_row, read_csv_rows

_log = get_logger("spendlens.ingest.csv_parser")

DEFAULT_CHUNK_SIZE = 500

type Cell = Callable[[ColumnField], str | None]


@dataclass(frozen=True, slots=True)
class _Prepared:
    match: FormatMatch
    rows: list[tuple[int, Sequence[str]]]


def _cell_reader(match: FormatMatch, row: Sequence[str]) -> Cell:
    def cell(fld: ColumnField) -> str | None:
        idx = match.columns.get(fld)
        if idx is None or idx >= len(row):
            return None
        return row[idx]

    return cell


def _optional_amount(raw: str | None, column: str) -> ParsedAmount | None:
    if raw is None or not raw.strip():
        return None
    return parse_amount(raw, column=column)


def _split_amount(cell: Cell) -> tuple[int, TransactionType]:
    debit = _optional_amount(cell("debit"), "debit")
    credit = _optional_amount(cell("credit"), "credit")
    if debit is not None and debit.cents != 0:
        return -abs(debit.cents), "expense"
    if credit is not None and credit.cents != 0:
        return abs(credit.cents), "income"
    raise RowParseError("no debit or credit amount", column="amount")


def _single_amount(raw: str, cell: Cell, profile: BankProfile) -> tuple[int, TransactionType]:
    parsed = parse_amount(raw, column="amount")
    cents, explicit = parsed.cents, parsed.explicit_sign
    if profile.invert_sign:
        cents, explicit = -cents, True

    labeled = classify_type_label(cell("type"))
    if labeled == "expense":
        return -abs(cents), "expense"
    if labeled == "income":
        return abs(cents), "income"
    if labeled == "transfer":
        return cents, "transfer"

    if explicit:
        return cents, ("expense" if cents < 0 else "income")
    default: TransactionType = profile.unsigned_type or "income"
    if default == "expense":
        return -abs(cents), "expense"
    return cents, "income"


def _amount_and_type(match: FormatMatch, cell: Cell) -> tuple[int, TransactionType]:
    raw = cell("amount")
    if raw is not None and raw.strip():
        return _single_amount(raw, cell, match.profile)
    if "debit" in match.columns or "credit" in match.columns:
        return _split_amount(cell)
    raise RowParseError("amount is empty", column="amount")


def parse_row(match: FormatMatch, row: Sequence[str]) -> ParsedTransaction:
    """Normalize one data row; raises ``RowParseError`` naming the bad column."""

    cell = _cell_reader(match, row)
    iso_date = parse_date(cell("date"), match.date_formats, column="date")
    amount_cents, tx_type = _amount_and_type(match, cell)

    description = clean_text(cell("description"))
    merchant = clean_text(cell("merchant")) or description
    if merchant is None:
        raise RowParseError("merchant is empty", column="merchant")

    return ParsedTransaction(
        date=iso_date,
        amount_cents=amount_cents,
        merchant=merchant,
        description=description,
        transaction_type=tx_type,
    )


class CsvParser:
    """Detect the layout of decoded CSV rows and parse them.

    >>> parser = CsvParser()
    >>> result = parser.parse_text(open("activity.csv").read())  # doctest: +SKIP
    """

    def __init__(
        self,
        detector: FormatDetector | None = None,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be a positive integer")
        self._detector = detector or FormatDetector()
        self._chunk_size = chunk_size

    @property
    def detector(self) -> FormatDetector:
        return self._detector

    def _prepare(self, rows: Sequence[Sequence[str]]) -> _Prepared:
        match = self._detector.locate(rows)
        data = [
            (number, row)
            for number, row in enumerate(rows[match.header_row :], start=match.header_row + 1)
            if not is_blank_row(row)
        ]
        return _Prepared(match=match, rows=data)

    def _chunks(self, prepared: _Prepared) -> Iterable[list[tuple[int, Sequence[str]]]]:
        rows = prepared.rows
        for start in range(0, len(rows), self._chunk_size):
            yield rows[start : start + self._chunk_size]

    @staticmethod
    def _parse_chunk(
        match: FormatMatch,
        chunk: Sequence[tuple[int, Sequence[str]]],
        transactions: list[ParsedTransaction],
        errors: list[ParseError],
    ) -> None:
        for number, row in chunk:
            try:
                transactions.append(parse_row(match, row))
            except RowParseError as exc:
                errors.append(
                    ParseError(
                        row=number,
                        message=str(exc),
                        column=exc.column,
                        raw=dict(zip(match.header, row, strict=False)),
                    )
                )

    @staticmethod
    def _finish(
        prepared: _Prepared,
        transactions: list[ParsedTransaction],
        errors: list[ParseError],
    ) -> ParseResult:
        result = ParseResult(
            transactions=tuple(transactions),
            errors=tuple(errors),
            total_rows=len(prepared.rows),
            detected_format=prepared.match.profile_id,
        )
        _log.info(
            "csv_parse:done profile=%s total=%d ok=%d errors=%d",
            result.detected_format,
            result.total_rows,
            result.success_count,
            result.error_count,
        )
        return result

    def parse_rows(self, rows: Sequence[Sequence[str]]) -> ParseResult:
        """Parse decoded rows (header included). Raises ``UnrecognizedFormatError``."""

        prepared = self._prepare(rows)
        transactions: list[ParsedTransaction] = []
        errors: list[ParseError] = []
        for chunk in self._chunks(prepared):
            self._parse_chunk(prepared.match, chunk, transactions, errors)
        return self._finish(prepared, transactions, errors)

    async def aparse_rows(self, rows: Sequence[Sequence[str]]) -> ParseResult:
        """Cooperative variant of :meth:`parse_rows` for event-loop hosts."""

        prepared = self._prepare(rows)
        transactions: list[ParsedTransaction] = []
        errors: list[ParseError] = []
        for chunk in self._chunks(prepared):
            self._parse_chunk(prepared.match, chunk, transactions, errors)
            await asyncio.sleep(0)
        return self._finish(prepared, transactions, errors)

    def parse_text(self, text: str) -> ParseResult:
        return self.parse_rows(read_csv_rows(text))


def parse_csv_text(
    text: str,
    *,
    profiles: Iterable[BankProfile] | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> ParseResult:
    """Detect and parse CSV ``text`` in one call."""

    return CsvParser(FormatDetector(profiles), chunk_size=chunk_size).parse_text(text)


__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "CsvParser",
    "parse_row",
    "parse_csv_text",
]
