"""Format detection: pick a bank profile for a raw CSV header.

Selection walks the profile table in priority order and returns the first
profile whose *required* fields all resolve to a header column (aliases are
compared case-insensitively after whitespace normalization). More specific
layouts carry lower priority numbers, so they win ties.

When no declared profile matches, a ``generic`` mapping is tried. It needs
only a date-like column, an amount-like column (``amount`` or ``debit`` or
``credit``) and a merchant/description-like column. Failing that, detection
raises :class:`~spendlens.errors.UnrecognizedFormatError`; there is no
partial parse without a column mapping.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from ..errors import UnrecognizedFormatError
from ..logging_setup import get_logger
from ..normalizers import DAY_FIRST_DATE_FORMATS
from .profiles import (
    GENERIC_PROFILE,
    BankProfile,
    ColumnField,
    default_profiles,
    normalize_header,
)
from .utils import is_blank_row

_log = get_logger("spendlens.ingest.detect")

MAX_HEADER_SCAN = 10

_AMOUNT_FIELDS: tuple[ColumnField, ...] = ("amount", "debit", "credit")
_TEXT_FIELDS: tuple[ColumnField, ...] = ("merchant", "description")
_NUMERIC_DATE_RE = re.compile(r"^\s*(\d{1,2})[/.-](\d{1,2})[/.-](\d{2,4})\b")


@dataclass(frozen=True, slots=True)
class FormatMatch:
    """A selected profile plus the resolved column positions.

    ``header_row`` is the 1-indexed physical row holding the header (1 unless
    a preamble precedes it). ``date_formats`` are the effective formats for
    this file; they equal the profile's own except for the generic mapping,
    whose order is chosen from the data rows.
    """

    profile: BankProfile
    header: tuple[str, ...]
    columns: Mapping[ColumnField, int]
    date_formats: tuple[str, ...]
    header_row: int = 1
    matched_required: int = field(default=0, compare=False)

    @property
    def profile_id(self) -> str:
        return self.profile.profile_id

    @property
    def is_generic(self) -> bool:
        return self.profile.profile_id == GENERIC_PROFILE.profile_id


def resolve_columns(header: Sequence[str], profile: BankProfile) -> dict[ColumnField, int]:
    """Map each profile field to the index of the first header cell matching an alias.

    Aliases are tried in declaration order; for duplicated header names the
    leftmost column wins.
    """

    positions: dict[str, int] = {}
    for idx, name in enumerate(header):
        positions.setdefault(normalize_header(name), idx)

    columns: dict[ColumnField, int] = {}
    for fld in profile.fields:
        for alias in profile.aliases_for(fld):
            pos = positions.get(normalize_header(alias))
            if pos is not None:
                columns[fld] = pos
                break
    return columns


def _looks_day_first(sample_rows: Iterable[Sequence[str]], date_idx: int) -> bool:
    # Any numeric date whose first component cannot be a month decides it.
    for row in sample_rows:
        if date_idx >= len(row):
            continue
        m = _NUMERIC_DATE_RE.match(row[date_idx])
        if m and int(m.group(1)) > 12:
            return True
    return False


class FormatDetector:
    """Select a :class:`BankProfile` for a header row.

    ``profiles`` defaults to the built-in table; it is re-sorted by priority
    here so callers may pass any iterable. ``sample_size`` limits how many
    data rows the generic date-order check reads; ``None`` reads them all.
    """

    def __init__(
        self,
        profiles: Iterable[BankProfile] | None = None,
        *,
        max_header_scan: int = MAX_HEADER_SCAN,
        sample_size: int | None = None,
    ) -> None:
        table = default_profiles() if profiles is None else profiles
        self._profiles: tuple[BankProfile, ...] = tuple(sorted(table, key=lambda p: p.priority))
        self._max_header_scan = max(1, max_header_scan)
        self._sample_size = None if sample_size is None else max(0, sample_size)

    @property
    def profiles(self) -> tuple[BankProfile, ...]:
        return self._profiles

    def detect(
        self,
        header: Sequence[str],
        sample_rows: Sequence[Sequence[str]] = (),
        *,
        header_row: int = 1,
    ) -> FormatMatch:
        """Return the first fully-matching profile, else the generic mapping.

        Raises ``UnrecognizedFormatError`` when neither applies.
        """

        cells = tuple(header)
        if not any(c.strip() for c in cells):
            raise UnrecognizedFormatError("CSV header row is empty", header=cells)

        for profile in self._profiles:
            columns = resolve_columns(cells, profile)
            matched = sum(1 for f in profile.required_aliases if f in columns)
            if matched == len(profile.required_aliases):
                _log.debug(
                    "detect:profile id=%s header_row=%d required=%d",
                    profile.profile_id,
                    header_row,
                    matched,
                )
                return FormatMatch(
                    profile=profile,
                    header=cells,
                    columns=columns,
                    date_formats=profile.date_formats,
                    header_row=header_row,
                    matched_required=matched,
                )

        return self._generic(cells, sample_rows, header_row=header_row)

    def _generic(
        self,
        header: tuple[str, ...],
        sample_rows: Sequence[Sequence[str]],
        *,
        header_row: int,
    ) -> FormatMatch:
        columns = resolve_columns(header, GENERIC_PROFILE)
        missing: list[str] = []
        if "date" not in columns:
            missing.append("date")
        if not any(f in columns for f in _AMOUNT_FIELDS):
            missing.append("amount")
        if not any(f in columns for f in _TEXT_FIELDS):
            missing.append("description")
        if missing:
            raise UnrecognizedFormatError(
                "unrecognized CSV header; missing columns: "
                + ", ".join(missing)
                + " (header: "
                + ", ".join(header)
                + ")",
                header=header,
            )

        formats = GENERIC_PROFILE.date_formats
        if _looks_day_first(sample_rows[: self._sample_size], columns["date"]):
            formats = DAY_FIRST_DATE_FORMATS
        _log.debug(
            "detect:generic header_row=%d day_first=%s",
            header_row,
            formats is DAY_FIRST_DATE_FORMATS,
        )
        return FormatMatch(
            profile=GENERIC_PROFILE,
            header=header,
            columns=columns,
            date_formats=formats,
            header_row=header_row,
            matched_required=1,
        )

    def locate(self, rows: Sequence[Sequence[str]]) -> FormatMatch:
        """Find the header within the first rows of a file and detect its format.

        Blank and preamble rows before the header are skipped; the returned
        ``header_row`` keeps physical numbering. When no scanned row is a
        recognizable header, the error from the first non-blank row is raised.
        """

        first_error: UnrecognizedFormatError | None = None
        for idx, row in enumerate(rows[: self._max_header_scan]):
            if is_blank_row(row):
                continue
            body = rows[idx + 1 :]
            if self._sample_size is not None:
                body = body[: self._sample_size]
            sample = [r for r in body if not is_blank_row(r)]
            try:
                return self.detect(row, sample, header_row=idx + 1)
            except UnrecognizedFormatError as exc:
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error
        raise UnrecognizedFormatError("CSV file has no header row")


def detect_format(
    header: Sequence[str],
    sample_rows: Sequence[Sequence[str]] = (),
    profiles: Iterable[BankProfile] | None = None,
) -> FormatMatch:
    """Convenience wrapper around :meth:`FormatDetector.detect`."""

    return FormatDetector(profiles).detect(header, sample_rows)


__all__ = [
    "MAX_HEADER_SCAN",
    "FormatMatch",
    "FormatDetector",
    "resolve_columns",
    "detect_format",
]
