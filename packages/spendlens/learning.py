"""Learning categorization rules from user corrections.

When a user assigns or corrects a transaction's category, the merchant is
reduced to a pattern (normalized text with trailing store numbers and
reference suffixes dropped) and the user's rules are adjusted:

- a rule for the same pattern and category is reinforced toward 100 with
  diminishing returns;
- rules for the same pattern but another category are penalized and
  deleted once they fall below the retirement threshold;
- with no same-category rule, one is created at the baseline confidence.

The constants live in :class:`LearningPolicy` so callers can tune them.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from .logging_setup import get_logger
from .models import CategorizationRule
from .normalizers import normalize_merchant
from .stores import CategoryStore, RuleStore

_log = get_logger("spendlens.learning")


@dataclass(frozen=True, slots=True)
class LearningPolicy:
    baseline: float = 70.0
    reinforcement: float = 0.3
    penalty: float = 20.0
    retirement_threshold: float = 30.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.baseline <= 100.0:
            raise ValueError("baseline must be within [0, 100]")
        if not 0.0 < self.reinforcement <= 1.0:
            raise ValueError("reinforcement must be within (0, 1]")
        if self.penalty < 0:
            raise ValueError("penalty must be >= 0")

    def reinforce(self, confidence: float) -> float:
        return round(min(100.0, confidence + (100.0 - confidence) * self.reinforcement), 2)

    def penalize(self, confidence: float) -> float:
        return round(max(0.0, confidence - self.penalty), 2)

    def should_retire(self, confidence: float) -> bool:
        return confidence < self.retirement_threshold


DEFAULT_POLICY = LearningPolicy()


def derive_pattern(merchant: str | None) -> str:
    """Pattern candidate for ``merchant``.

    ``"STARBUCKS #1234"`` → ``"starbucks"``; ``"7-ELEVEN 00123"`` →
    ``"7eleven"``. At least one token is always kept.
    """

    tokens = normalize_merchant(merchant).split()
    while len(tokens) > 1 and any(ch.isdigit() for ch in tokens[-1]):
        tokens.pop()
    return " ".join(tokens)


@dataclass(frozen=True, slots=True)
class LearningOutcome:
    pattern: str
    rule: CategorizationRule | None
    created: bool = False
    penalized: tuple[CategorizationRule, ...] = ()
    retired: tuple[str, ...] = ()

    @property
    def reinforced(self) -> bool:
        return self.rule is not None and not self.created


def learn_from_correction(
    user_id: str,
    merchant: str,
    category_id: str,
    *,
    rule_store: RuleStore,
    policy: LearningPolicy = DEFAULT_POLICY,
) -> LearningOutcome:
    """Apply one user correction to the rule store.

    Store errors propagate; a correction the store could not record must not
    be reported as learned.
    """

    pattern = derive_pattern(merchant)
    if not pattern:
        return LearningOutcome(pattern="", rule=None)

    same_pattern = [
        r
        for r in rule_store.fetch_user_rules(user_id)
        if normalize_merchant(r.merchant_pattern) == pattern
    ]

    penalized: list[CategorizationRule] = []
    retired: list[str] = []
    for rule in same_pattern:
        if rule.category_id == category_id:
            continue
        lowered = policy.penalize(float(rule.confidence))
        if policy.should_retire(lowered):
            rule_store.delete_rule(rule.id)
            retired.append(rule.id)
        else:
            penalized.append(
                rule_store.upsert_rule(user_id, rule.merchant_pattern, rule.category_id, lowered)
            )

    current = next((r for r in same_pattern if r.category_id == category_id), None)
    if current is not None:
        confidence = policy.reinforce(float(current.confidence))
        rule = rule_store.upsert_rule(user_id, current.merchant_pattern, category_id, confidence)
        created = False
    else:
        rule = rule_store.upsert_rule(user_id, pattern, category_id, policy.baseline)
        created = True

    _log.info(
        "learn:rule user=%s pattern=%r category=%s confidence=%.2f created=%s "
        "penalized=%d retired=%d",
        user_id,
        pattern,
        category_id,
        rule.confidence,
        created,
        len(penalized),
        len(retired),
    )
    return LearningOutcome(
        pattern=pattern,
        rule=rule,
        created=created,
        penalized=tuple(penalized),
        retired=tuple(retired),
    )


# ---------------------------------------------------------------------------
# Default seed rules
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SeedRule:
    merchant_pattern: str
    category_name: str
    confidence: float = 100.0


def _seeds(category: str, confidence: float, *patterns: str) -> tuple[SeedRule, ...]:
    return tuple(SeedRule(p, category, confidence) for p in patterns)


# Well-known merchants at full confidence, generic keywords a notch lower.
# Very short patterns are left out: substring matching would hit unrelated
# merchants ("BP" in "BPM", "AT&T" in "SEATTLE").
DEFAULT_SEED_RULES: tuple[SeedRule, ...] = (
    *_seeds(
        "Dining",
        100,
        "STARBUCKS",
        "MCDONALDS",
        "SUBWAY",
        "CHIPOTLE",
        "PANERA BREAD",
        "DUNKIN",
        "TACO BELL",
        "PIZZA HUT",
        "DOMINOS",
        "BURGER KING",
        "WENDYS",
    ),
    *_seeds(
        "Shopping",
        100,
        "AMAZON",
        "WALMART",
        "TARGET",
        "COSTCO",
        "BEST BUY",
        "HOME DEPOT",
        "LOWES",
        "IKEA",
        "MACYS",
        "NORDSTROM",
    ),
    *_seeds(
        "Groceries", 100, "WHOLE FOODS", "TRADER JOES", "SAFEWAY", "KROGER", "PUBLIX", "ALBERTSONS"
    ),
    *_seeds("Transportation", 100, "SHELL", "CHEVRON", "EXXON", "MOBIL", "UBER", "LYFT", "PARKING"),
    *_seeds("Utilities", 100, "VERIZON", "COMCAST", "SPECTRUM", "T-MOBILE"),
    *_seeds("Entertainment", 100, "NETFLIX", "SPOTIFY", "HULU", "DISNEY+", "AMC THEATRES"),
    *_seeds("Healthcare", 100, "CVS", "WALGREENS", "RITE AID"),
    *_seeds("Dining", 85, "RESTAURANT", "CAFE", "COFFEE", "DINER", "BAKERY", "PIZZA", "SUSHI"),
    *_seeds("Groceries", 85, "GROCERY", "SUPERMARKET", "MARKET"),
    *_seeds("Transportation", 85, "FUEL", "GASOLINE", "TRANSIT"),
    *_seeds("Healthcare", 85, "PHARMACY", "CLINIC", "DENTAL"),
)


def seed_default_rules(
    user_id: str,
    *,
    category_store: CategoryStore,
    rule_store: RuleStore,
    seeds: Sequence[SeedRule] = DEFAULT_SEED_RULES,
) -> list[CategorizationRule]:
    """Install seed rules for categories the user has, by category name.

    Patterns the user already has a rule for (any category) are left alone,
    so learned rules are never overwritten.
    """

    by_name = {c.name.casefold(): c for c in category_store.list_categories(user_id)}
    taken = {normalize_merchant(r.merchant_pattern) for r in rule_store.fetch_user_rules(user_id)}

    created: list[CategorizationRule] = []
    for seed in seeds:
        category = by_name.get(seed.category_name.casefold())
        pattern = normalize_merchant(seed.merchant_pattern)
        if category is None or not pattern or pattern in taken:
            continue
        created.append(rule_store.upsert_rule(user_id, pattern, category.id, seed.confidence))
        taken.add(pattern)

    _log.info("learn:seeded user=%s rules=%d", user_id, len(created))
    return created


__all__ = [
    "LearningPolicy",
    "DEFAULT_POLICY",
    "derive_pattern",
    "LearningOutcome",
    "learn_from_correction",
    "SeedRule",
    "DEFAULT_SEED_RULES",
    "seed_default_rules",
]
