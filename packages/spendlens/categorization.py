"""Rule-based categorization of merchants.

A rule matches when its normalized ``merchant_pattern`` is a substring of the
normalized merchant. Among matching rules the winner is chosen by an explicit
ranking, never by the order the store returned them in:

1. longest normalized pattern (more specific),
2. highest confidence,
3. most recently updated,
4. rule id (stable last resort).

No match yields :data:`~spendlens.models.UNCATEGORIZED`; it is a valid
outcome, not an error.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from .errors import RuleFetchDegraded
from .logging_setup import get_logger
from .models import UNCATEGORIZED, CategorizationRule, CategoryAssignment
from .normalizers import normalize_merchant
from .stores import RuleStore

_log = get_logger("spendlens.categorization")


def _updated_ts(value: datetime | None) -> float:
    if value is None:
        return float("-inf")
    # SQLite hands back naive values; stored timestamps are UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.timestamp()


@dataclass(frozen=True, slots=True)
class RuleSet:
    """Rules pre-normalized and sorted best-first for sort-then-scan matching."""

    entries: tuple[tuple[str, CategorizationRule], ...]

    @classmethod
    def from_rules(cls, rules: Iterable[CategorizationRule]) -> RuleSet:
        normalized = [(normalize_merchant(r.merchant_pattern), r) for r in rules]
        # Patterns that normalize to nothing would match every merchant.
        usable = [(p, r) for p, r in normalized if p]
        usable.sort(
            key=lambda pr: (
                -len(pr[0]),
                -float(pr[1].confidence),
                -_updated_ts(pr[1].updated_at),
                pr[1].id,
            )
        )
        return cls(entries=tuple(usable))

    def __len__(self) -> int:
        return len(self.entries)

    def match(self, merchant: str | None) -> CategoryAssignment:
        target = normalize_merchant(merchant)
        if not target:
            return UNCATEGORIZED
        for pattern, rule in self.entries:
            if pattern in target:
                return CategoryAssignment(
                    category_id=rule.category_id,
                    confidence=float(rule.confidence),
                    rule_id=rule.id,
                    merchant_pattern=rule.merchant_pattern,
                )
        return UNCATEGORIZED


def categorize_merchant(
    merchant: str | None, rules: Iterable[CategorizationRule] | RuleSet
) -> CategoryAssignment:
    """Return the best-ranked matching rule's category for ``merchant``."""

    rule_set = rules if isinstance(rules, RuleSet) else RuleSet.from_rules(rules)
    return rule_set.match(merchant)


@dataclass(frozen=True, slots=True)
class CategorizationBatch:
    """Assignments aligned with the input order."""

    assignments: tuple[CategoryAssignment, ...]
    rule_count: int
    degraded: RuleFetchDegraded | None = None

    @property
    def categorized_count(self) -> int:
        return sum(1 for a in self.assignments if a.is_categorized)


def load_rule_set(user_id: str, rule_store: RuleStore) -> tuple[RuleSet, RuleFetchDegraded | None]:
    """Fetch and rank a user's rules; a failed fetch degrades to an empty set."""

    try:
        rules = rule_store.fetch_user_rules(user_id)
    except Exception as exc:  # noqa: BLE001
        _log.debug("categorize:rules_unavailable user=%s error=%s", user_id, exc)
        return RuleSet(entries=()), RuleFetchDegraded.from_exception(exc)
    return RuleSet.from_rules(rules), None


def categorize_transactions(
    merchants: Sequence[str],
    *,
    user_id: str,
    rule_store: RuleStore,
) -> CategorizationBatch:
    """Categorize ``merchants`` with one rule fetch for the whole batch."""

    rule_set, degraded = load_rule_set(user_id, rule_store)
    assignments = tuple(rule_set.match(m) for m in merchants)
    batch = CategorizationBatch(
        assignments=assignments, rule_count=len(rule_set), degraded=degraded
    )
    _log.debug(
        "categorize:done user=%s items=%d rules=%d categorized=%d",
        user_id,
        len(assignments),
        batch.rule_count,
        batch.categorized_count,
    )
    return batch


__all__ = [
    "RuleSet",
    "categorize_merchant",
    "CategorizationBatch",
    "load_rule_set",
    "categorize_transactions",
]
