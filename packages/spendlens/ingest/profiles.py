"""Bank CSV profiles: a static table of column-mapping records.

A profile is data, not behavior. Each record names the logical fields it
understands and, per field, the header aliases that may carry it:

- ``required_aliases``: every field listed here must resolve to a header
  column for the profile to be selected. Fields that the parser ignores
  (``post_date``, ``balance``, ``reference``, ...) are still useful here as a
  layout signature.
- ``optional_aliases``: resolved when present, never needed for selection.

The built-in table lives in ``ingest/seeds/bank_profiles.v1.json`` and is
validated with Pydantic on load. ``SPENDLENS_PROFILES_FILE`` (see
:mod:`spendlens.config`) can point at a replacement table with the same shape.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from functools import cache
from importlib import resources
from os import PathLike
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, TypeAdapter, field_validator, model_validator

from ..normalizers import DEFAULT_DATE_FORMATS

type ColumnField = Literal[
    "date",
    "amount",
    "debit",
    "credit",
    "merchant",
    "description",
    "type",
    "post_date",
    "reference",
    "balance",
    "category",
    "memo",
]

GENERIC_PROFILE_ID = "generic"
_SEED_FILE = "bank_profiles.v1.json"


def normalize_header(name: str) -> str:
    """Case-insensitive, whitespace-normalized header key (BOM stripped)."""

    return " ".join(name.replace("\ufeff", "").split()).casefold()


class BankProfile(BaseModel):
    """A named column-mapping definition for one bank's CSV export layout."""

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    profile_id: str
    display_name: str
    priority: int
    required_aliases: dict[ColumnField, tuple[str, ...]]
    optional_aliases: dict[ColumnField, tuple[str, ...]] = {}
    date_formats: tuple[str, ...] = DEFAULT_DATE_FORMATS
    # Type for amounts written without any sign; None means "income".
    unsigned_type: Literal["expense", "income"] | None = None
    # Exports where charges are positive and credits negative.
    invert_sign: bool = False

    @field_validator("required_aliases", "optional_aliases")
    @classmethod
    def _aliases_non_empty(
        cls, v: dict[ColumnField, tuple[str, ...]]
    ) -> dict[ColumnField, tuple[str, ...]]:
        cleaned: dict[ColumnField, tuple[str, ...]] = {}
        for field, aliases in v.items():
            kept = tuple(a.strip() for a in aliases if a and a.strip())
            if not kept:
                raise ValueError(f"field {field!r} must declare at least one alias")
            cleaned[field] = kept
        return cleaned

    @field_validator("date_formats")
    @classmethod
    def _formats_non_empty(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if not v:
            raise ValueError("date_formats must not be empty")
        return v

    @model_validator(mode="after")
    def _check_layout(self) -> BankProfile:
        fields = set(self.required_aliases) | set(self.optional_aliases)
        if "date" not in self.required_aliases:
            raise ValueError(f"profile {self.profile_id!r}: 'date' must be a required field")
        if not fields & {"amount", "debit", "credit"}:
            raise ValueError(f"profile {self.profile_id!r}: needs an amount or debit/credit column")
        if not fields & {"merchant", "description"}:
            raise ValueError(f"profile {self.profile_id!r}: needs a merchant or description column")
        if self.profile_id == GENERIC_PROFILE_ID:
            raise ValueError(f"profile id {GENERIC_PROFILE_ID!r} is reserved")
        return self

    def aliases_for(self, field: ColumnField) -> tuple[str, ...]:
        return self.required_aliases.get(field, ()) + self.optional_aliases.get(field, ())

    @property
    def fields(self) -> tuple[ColumnField, ...]:
        seen: dict[ColumnField, None] = {}
        for f in (*self.required_aliases, *self.optional_aliases):
            seen.setdefault(f, None)
        return tuple(seen)


_PROFILE_LIST = TypeAdapter(list[BankProfile])


def _ordered(profiles: Iterable[BankProfile]) -> tuple[BankProfile, ...]:
    items = list(profiles)
    ids = [p.profile_id for p in items]
    dupes = sorted({i for i in ids if ids.count(i) > 1})
    if dupes:
        raise ValueError(f"duplicate profile ids: {', '.join(dupes)}")
    # sorted() is stable, so equal priorities keep table order
    return tuple(sorted(items, key=lambda p: p.priority))


def parse_profiles(data: Sequence[object]) -> tuple[BankProfile, ...]:
    """Validate raw JSON-like data into a priority-ordered profile table."""

    return _ordered(_PROFILE_LIST.validate_python(data))


def load_profiles(path: str | PathLike[str]) -> tuple[BankProfile, ...]:
    """Load and validate a profile table from a JSON file."""

    with Path(path).open("r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError("profile JSON must be a list of profile objects")
    return parse_profiles(data)


@cache
def default_profiles() -> tuple[BankProfile, ...]:
    """Return the built-in profile table (loaded once per process)."""

    text = resources.files(__package__).joinpath("seeds", _SEED_FILE).read_text(encoding="utf-8")
    return parse_profiles(json.loads(text))


# Broad alias lists for the fallback layout; order is resolution preference.
GENERIC_PROFILE = BankProfile.model_construct(
    profile_id=GENERIC_PROFILE_ID,
    display_name="Generic CSV",
    priority=10_000,
    required_aliases={
        "date": (
            "Date",
            "Transaction Date",
            "Trans Date",
            "Posted Date",
            "Post Date",
            "Posting Date",
            "Value Date",
        ),
    },
    optional_aliases={
        "amount": (
            "Amount",
            "Transaction Amount",
            "Amount ($)",
            "Amount($)",
            "Amt",
            "Value",
            "Total",
        ),
        "debit": ("Debit", "Debit Amount", "Withdrawal", "Withdrawals", "Money Out", "Paid Out"),
        "credit": ("Credit", "Credit Amount", "Deposit", "Deposits", "Money In", "Paid In"),
        "merchant": ("Merchant", "Merchant Name", "Payee", "Vendor", "Store", "Name"),
        "description": (
            "Description",
            "Transaction Description",
            "Details",
            "Narrative",
            "Memo",
        ),
        "type": ("Type", "Transaction Type"),
    },
    date_formats=("%m/%d/%Y", "%Y-%m-%d", "%m-%d-%Y", "%Y/%m/%d", "%m/%d/%y"),
    unsigned_type=None,
    invert_sign=False,
)


__all__ = [
    "ColumnField",
    "GENERIC_PROFILE_ID",
    "GENERIC_PROFILE",
    "BankProfile",
    "normalize_header",
    "parse_profiles",
    "load_profiles",
    "default_profiles",
]
