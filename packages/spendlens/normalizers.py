"""Cell-level normalizers shared by the CSV parser and the matching code.

- Amounts: currency symbols, thousands separators, leading/trailing signs,
  parentheses and ``CR``/``DR`` suffixes are understood; the result is an
  integer number of cents plus whether the text carried an explicit sign.
- Dates: tried against an ordered list of ``strptime`` formats and emitted as
  ISO ``YYYY-MM-DD``.
- Type labels: free-text ``Type`` cells mapped to ``expense``/``income``/
  ``transfer`` by keyword.
- Merchants: :func:`normalize_merchant` is the single normalization used for
  duplicate keys, rule matching and pattern learning.

Every failure raises :class:`~spendlens.errors.RowParseError` naming the
logical column so the parser can record it against the row.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .errors import RowParseError
from .models import TransactionType

# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------

_CURRENCY_SYMBOLS = "$€£¥₹"
_NUMBER_RE = re.compile(r"^(?:\d+(?:\.\d*)?|\.\d+)$")


@dataclass(frozen=True, slots=True)
class ParsedAmount:
    """Signed cents as written plus whether the sign was explicit."""

    cents: int
    explicit_sign: bool


def parse_amount(raw: str | None, *, column: str = "amount") -> ParsedAmount:
    """Parse an amount cell into signed integer cents.

    ``-12.50``, ``(12.50)``, ``12.50-``, ``$-12.50``, ``-($1,234.56)`` and
    ``12.50 DR`` are negative with an explicit sign; ``+12.50`` and
    ``12.50 CR`` are positive with an explicit sign; ``12.50`` is positive
    without one.
    """

    if raw is None or not raw.strip():
        raise RowParseError("amount is empty", column=column)
    s = "".join(raw.split())
    negative = False
    explicit = False

    upper = s.upper()
    if upper.endswith("DR"):
        negative, explicit = True, True
        s = s[:-2]
    elif upper.endswith("CR"):
        explicit = True
        s = s[:-2]

    # Strip sign, currency and parentheses markers in any order until stable.
    while True:
        changed = False
        if s.startswith("+"):
            explicit = True
            s = s[1:]
            changed = True
        elif s.startswith("-"):
            negative, explicit = True, True
            s = s[1:]
            changed = True
        if s.endswith("-"):
            negative, explicit = True, True
            s = s[:-1]
            changed = True
        if s and s[0] in _CURRENCY_SYMBOLS:
            s = s[1:]
            changed = True
        if s and s[-1] in _CURRENCY_SYMBOLS:
            s = s[:-1]
            changed = True
        if len(s) >= 2 and s.startswith("(") and s.endswith(")"):
            negative, explicit = True, True
            s = s[1:-1]
            changed = True
        if not changed:
            break

    s = s.replace(",", "")
    if not _NUMBER_RE.match(s):
        raise RowParseError(f"invalid amount: {raw.strip()!r}", column=column)
    try:
        d = Decimal(s)
    except InvalidOperation as exc:
        raise RowParseError(f"invalid amount: {raw.strip()!r}", column=column) from exc

    cents = int((d * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return ParsedAmount(cents=-cents if negative else cents, explicit_sign=explicit)


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

DEFAULT_DATE_FORMATS: tuple[str, ...] = ("%m/%d/%Y", "%Y-%m-%d", "%m/%d/%y")
DAY_FIRST_DATE_FORMATS: tuple[str, ...] = ("%d/%m/%Y", "%d-%m-%Y", "%Y-%m-%d", "%d/%m/%y")


def _date_token(s: str) -> str:
    # Exports may append a time ("01/15/2024 10:30", "2024-01-15T10:30:00").
    first = s.split()[0]
    if "T" in first and first[:4].isdigit():
        first = first.split("T", 1)[0]
    return first


def parse_date(
    raw: str | None,
    formats: Sequence[str] = DEFAULT_DATE_FORMATS,
    *,
    column: str = "date",
) -> str:
    """Return ``raw`` as ISO ``YYYY-MM-DD`` using the first format that fits."""

    if raw is None or not raw.strip():
        raise RowParseError("date is empty", column=column)
    token = _date_token(raw.strip())
    for fmt in formats:
        try:
            return datetime.strptime(token, fmt).date().isoformat()
        except ValueError:
            continue
    raise RowParseError(
        f"unable to parse date {raw.strip()!r}; expected one of: {', '.join(formats)}",
        column=column,
    )


# ---------------------------------------------------------------------------
# Transaction type labels
# ---------------------------------------------------------------------------

# Checked in order; transfer keywords first so "credit card payment" is a transfer.
_TYPE_KEYWORDS: tuple[tuple[frozenset[str], TransactionType], ...] = (
    (frozenset({"transfer", "xfer", "payment"}), "transfer"),
    (frozenset({"debit", "withdrawal", "sale", "purchase", "fee", "dr"}), "expense"),
    (frozenset({"credit", "deposit", "refund", "return", "interest", "cr"}), "income"),
)


def classify_type_label(label: str | None) -> TransactionType | None:
    """Map a free-text type cell to a transaction type, or ``None`` if unknown."""

    if not label:
        return None
    tokens = set(re.findall(r"[a-z]+", label.casefold()))
    for keywords, tx_type in _TYPE_KEYWORDS:
        if tokens & keywords:
            return tx_type
    return None


# ---------------------------------------------------------------------------
# Merchants
# ---------------------------------------------------------------------------

_PUNCT_RE = re.compile(r"[^\w\s]|_")


def normalize_merchant(merchant: str | None) -> str:
    """Case-fold, strip punctuation and collapse whitespace.

    ``"  STARBUCKS  #123 "`` → ``"starbucks 123"``. Returns ``""`` for
    ``None``/blank input.
    """

    if not merchant:
        return ""
    s = unicodedata.normalize("NFKC", merchant).casefold()
    s = _PUNCT_RE.sub("", s)
    return " ".join(s.split())


def clean_text(value: str | None) -> str | None:
    """Trim a free-text cell; blank becomes ``None``."""

    if value is None:
        return None
    s = value.strip()
    return s or None


__all__ = [
    "ParsedAmount",
    "parse_amount",
    "DEFAULT_DATE_FORMATS",
    "DAY_FIRST_DATE_FORMATS",
    "parse_date",
    "classify_type_label",
    "normalize_merchant",
    "clean_text",
]
