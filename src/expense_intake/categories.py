"""Expense category registry and payment-method affinity table."""

import re

OTHER_CATEGORY = "Other"

DEFAULT_CATEGORIES: tuple[str, ...] = (
    "Food & Dining",
    "Transportation",
    "Office Supplies",
    "Utilities",
    "Entertainment",
    "Healthcare",
    "Travel",
    "Shopping",
    "Education",
    "Insurance",
    "Taxes",
    OTHER_CATEGORY,
)

# First entry of each list is the default suggestion for the category.
PAYMENT_METHOD_PATTERNS: dict[str, tuple[str, ...]] = {
    "Food & Dining": ("Credit Card", "Cash", "Digital Wallet"),
    "Transportation": ("Credit Card", "Digital Wallet", "Cash"),
    "Office Supplies": ("Credit Card", "Bank Transfer"),
    "Utilities": ("Bank Transfer", "Credit Card"),
    "Entertainment": ("Credit Card", "Digital Wallet", "Cash"),
    "Healthcare": ("Credit Card", "Cash", "Insurance"),
    "Travel": ("Credit Card", "Bank Transfer"),
    "Shopping": ("Credit Card", "Digital Wallet", "Cash"),
    "Education": ("Bank Transfer", "Credit Card"),
    "Insurance": ("Bank Transfer", "Credit Card"),
    "Taxes": ("Bank Transfer", "Credit Card"),
    OTHER_CATEGORY: ("Credit Card", "Cash", "Bank Transfer"),
}

PAYMENT_METHODS: tuple[str, ...] = (
    "Credit Card",
    "Debit Card",
    "Cash",
    "Bank Transfer",
    "Digital Wallet",
)

CONFIDENCE_FLOOR = 0.7
CONFIDENCE_CEILING = 1.0

# Applied to a provider's confidence when its category had to be rewritten.
CORRECTION_PENALTY = 0.8


def is_known_category(category: str | None) -> bool:
    return category in DEFAULT_CATEGORIES


def default_payment_method(category: str) -> str:
    """Return the first affinity entry for *category* (``Credit Card`` if unknown)."""
    methods = PAYMENT_METHOD_PATTERNS.get(category)
    return methods[0] if methods else "Credit Card"


def resolve_payment_method(category: str, suggestion: str | None) -> str:
    """Keep *suggestion* only when it belongs to the category's affinity list."""
    methods = PAYMENT_METHOD_PATTERNS.get(category, ())
    if suggestion and suggestion in methods:
        return suggestion
    return default_payment_method(category)


def clamp_confidence(value: float | None) -> float:
    if value is None:
        return CONFIDENCE_FLOOR
    return max(CONFIDENCE_FLOOR, min(CONFIDENCE_CEILING, float(value)))


def category_slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
