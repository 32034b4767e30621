"""Deterministic, dependency-free expense extraction.

This is the fallback of last resort for every provider-backed path: it never
raises and has no hidden state, so identical input always yields identical
output.
"""

import re
from collections.abc import Sequence
from datetime import date

from expense_intake.categories import (
    CONFIDENCE_FLOOR,
    DEFAULT_CATEGORIES,
    OTHER_CATEGORY,
    default_payment_method,
)
from expense_intake.models import (
    ExpenseContext,
    ExpenseDraft,
    ExtractionResult,
    ReceiptFields,
)
from expense_intake.utils.dates import normalize_date_value, resolve_date_phrase

# Ordered: the first group with a matching keyword wins.
KEYWORD_GROUPS: tuple[tuple[str, float, str, tuple[str, ...]], ...] = (
    (
        "Food & Dining",
        0.9,
        "Merchant name indicates food service",
        (
            "restaurant",
            "cafe",
            "food",
            "pizza",
            "burger",
            "coffee",
            "starbucks",
            "mcdonalds",
            "kfc",
            "subway",
        ),
    ),
    (
        "Transportation",
        0.9,
        "Merchant name indicates transportation service",
        ("uber", "lyft", "taxi", "gas", "fuel", "petrol", "metro", "bus"),
    ),
    (
        "Office Supplies",
        0.8,
        "Merchant name indicates retail/general store",
        ("staples", "office", "amazon", "walmart", "target"),
    ),
    (
        "Utilities",
        0.9,
        "Merchant name indicates utility service",
        ("electric", "water", "gas", "internet", "phone", "mobile"),
    ),
)

FALLBACK_REASONING = "Fallback categorization based on merchant name patterns"

SUGGESTION_PADDING: tuple[str, ...] = (
    "Other",
    "Entertainment",
    "Healthcare",
    "Travel",
    "Shopping",
    "Education",
    "Insurance",
    "Taxes",
)

MAX_SUGGESTIONS = 3

# Filename keyword -> (merchant hint, category hint) for unreadable artifacts.
FILENAME_HINTS: tuple[tuple[tuple[str, ...], str, str], ...] = (
    (("starbucks", "coffee"), "Starbucks", "Food & Dining"),
    (("uber", "taxi", "lyft"), "Ride Service", "Transportation"),
    (("office", "supplies"), "Office Supplies", "Office Supplies"),
)

_NUMBER = r"(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d{1,2})?"
AMOUNT_PATTERNS = (
    re.compile(rf"\$\s*({_NUMBER})"),
    re.compile(rf"(?:\b(?:usd|inr|eur|rs\.?)|₹)\s*({_NUMBER})", re.IGNORECASE),
    re.compile(
        rf"({_NUMBER})\s*(?:dollars?|bucks|usd|inr|eur|rupees)\b", re.IGNORECASE
    ),
    re.compile(
        rf"(?<![\d/.:,-])({_NUMBER})(?![\d/:-]|,\d)"
        r"(?!\s*(?:days?|weeks?|months?|years?|am|pm)\b)",
        re.IGNORECASE,
    ),
)

_STOP_WORDS = r"for|on|yesterday|today|tomorrow|last|this|and|with|to"
MERCHANT_PATTERNS = (
    re.compile(
        rf"\b(?:at|from)\s+([A-Za-z][\w&'.\- ]*?)"
        rf"(?=\s+(?:{_STOP_WORDS})\b|\s+\$|\s+\d|\s*[,!?]|\s*\.?\s*$)",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(?:merchant|store|shop|place|vendor)\s+(?:to|is|was)\s+"
        r"([A-Za-z][\w&'.\- ]*?)\s*[.!?]?\s*$",
        re.IGNORECASE,
    ),
    re.compile(r"^([A-Za-z][\w&'.\- ]*?)\s+for\s+\$", re.IGNORECASE),
)
LEADING_FILLER = re.compile(
    r"^\s*(?:i\s+)?(?:just\s+)?(?:spent|paid|bought|got|had)\s+", re.IGNORECASE
)
DESCRIPTION_PATTERNS = (
    re.compile(
        r"\bfor\s+(?!\$)([A-Za-z][A-Za-z' ]*?)"
        r"(?=\s+(?:at|from|on|yesterday|today|tomorrow|last|this|\w+\s+\w+\s+ago)\b"
        r"|\s+\$|\s+\d|\s*[,.!?]|\s*$)",
        re.IGNORECASE,
    ),
    re.compile(r"\bdescription\s+(?:to|is)\s+(.+?)\s*[.!?]?\s*$", re.IGNORECASE),
)
NOTES_PATTERN = re.compile(r"\bnotes?\s*[:\-]\s*(.+?)\s*$", re.IGNORECASE)
VOICE_MERCHANT_PATTERN = re.compile(
    r"([a-zA-Z][a-zA-Z\s]+?)\s+(?:restaurant|cafe|store|shop|service)\b", re.IGNORECASE
)

TOTAL_PATTERN = re.compile(
    r"\b(?:grand\s+)?total\b[^\d$\n]*\$?\s*"
    r"(\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:[.,]\d{1,2})?)",
    re.IGNORECASE,
)
RECEIPT_DATE_PATTERN = re.compile(r"(\d{1,2}/\d{1,2}/\d{2,4}|\d{4}-\d{2}-\d{2})")
MERCHANT_LABEL = re.compile(r"^merchant:\s*(.+)$", re.IGNORECASE | re.MULTILINE)
VERIFY_MANUALLY = "please verify manually"

DESCRIPTION_CLASSES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("lunch", "dinner", "breakfast"), "Meal"),
    (("coffee", "tea"), "Beverage"),
    (("ride", "uber", "taxi"), "Transportation"),
    (("shopping", "bought"), "Purchase"),
)


def _normalize(text: str | None) -> str:
    return (text or "").lower().replace("'", "").replace("’", "")


def _match_group(text: str) -> tuple[str, float, str] | None:
    normalized = _normalize(text)
    if not normalized:
        return None
    for category, confidence, reasoning, keywords in KEYWORD_GROUPS:
        if any(keyword in normalized for keyword in keywords):
            return category, confidence, reasoning
    return None


def _clean_phrase(value: str) -> str | None:
    cleaned = re.sub(r"\s+", " ", value).strip(" .,-")
    return cleaned or None


def _total_value(text: str) -> float:
    """Grouped thousands lose their commas; a lone ",dd" is a decimal comma."""
    if re.fullmatch(r"\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?", text):
        return float(text.replace(",", ""))
    return float(text.replace(",", "."))


class RuleBasedExtractor:
    """Keyword and pattern matcher used whenever a provider is unavailable."""

    def categorize(self, expense: ExpenseContext) -> ExtractionResult:
        """Match the merchant name first, then the description."""
        matched = _match_group(expense.merchant) or _match_group(expense.description)
        return self._result(matched)

    def categorize_text(self, text: str) -> ExtractionResult:
        return self._result(_match_group(text))

    def _result(self, matched: tuple[str, float, str] | None) -> ExtractionResult:
        if matched is None:
            matched = (OTHER_CATEGORY, CONFIDENCE_FLOOR, FALLBACK_REASONING)
        category, confidence, reasoning = matched
        return ExtractionResult(
            category=category,
            confidence=confidence,
            reasoning=reasoning,
            suggested_payment_method=default_payment_method(category),
        )

    def suggest_categories(self, merchant: str) -> list[str]:
        """Return exactly three category names for autocomplete."""
        suggestions: list[str] = []
        matched = _match_group(merchant)
        if matched is not None:
            suggestions.append(matched[0])
        for category in SUGGESTION_PADDING:
            if len(suggestions) >= MAX_SUGGESTIONS:
                break
            if category not in suggestions:
                suggestions.append(category)
        return suggestions

    def extract_amount(self, text: str) -> str | None:
        for pattern in AMOUNT_PATTERNS:
            match = pattern.search(text)
            if match:
                return match.group(1).replace(",", "")
        return None

    def extract_merchant(self, text: str) -> str | None:
        stripped = LEADING_FILLER.sub("", text.strip())
        for pattern in MERCHANT_PATTERNS:
            match = pattern.search(stripped)
            if match:
                merchant = _clean_phrase(match.group(1))
                if merchant and len(merchant) > 1:
                    return merchant
        return None

    def extract_description(self, text: str) -> str | None:
        for pattern in DESCRIPTION_PATTERNS:
            match = pattern.search(text)
            if match:
                description = _clean_phrase(match.group(1))
                if description:
                    return description
        return None

    def extract_category(self, text: str, categories: Sequence[str]) -> str | None:
        low = text.lower()
        for name in categories:
            if name == OTHER_CATEGORY and "category" not in low:
                continue
            if re.search(rf"(?<!\w){re.escape(name.lower())}(?!\w)", low):
                return name
        return None

    def extract_message_fields(
        self,
        message: str,
        today: date,
        categories: Sequence[str] = DEFAULT_CATEGORIES,
    ) -> ExpenseDraft:
        """Pull whatever expense fields a chat message mentions."""
        resolved = resolve_date_phrase(message, today)
        notes_match = NOTES_PATTERN.search(message)
        return ExpenseDraft(
            amount=self.extract_amount(message),
            merchant=self.extract_merchant(message),
            description=self.extract_description(message),
            date=resolved.isoformat() if resolved else None,
            category=self.extract_category(message, categories),
            notes=notes_match.group(1) if notes_match else None,
        )

    def extract_spoken_expense(self, text: str, today: date) -> ReceiptFields:
        """Extract an expense from a transcribed or typed sentence."""
        amount = self.extract_amount(text)
        merchant = self.extract_merchant(text)
        if merchant is None:
            match = VOICE_MERCHANT_PATTERN.search(text)
            if match and len(match.group(1).strip()) > 2:
                merchant = _clean_phrase(match.group(1))
        merchant = merchant or "Unknown"

        description = self.extract_description(text)
        if description is None:
            low = text.lower()
            description = next(
                (
                    label
                    for keywords, label in DESCRIPTION_CLASSES
                    if any(keyword in low for keyword in keywords)
                ),
                "Expense",
            )

        resolved = resolve_date_phrase(text, today)
        return ReceiptFields(
            merchant=merchant[:1].upper() + merchant[1:],
            amount=float(amount) if amount else 0.0,
            description=description,
            date=resolved.isoformat() if resolved else None,
            notes=None,
            confidence=CONFIDENCE_FLOOR,
        )

    def analyze_receipt_text(
        self, text: str, today: date | None = None
    ) -> ReceiptFields:
        """Best-effort reading of OCR or PDF text without a provider."""
        lines = [line.strip() for line in text.splitlines() if line.strip()]

        merchant = None
        label = MERCHANT_LABEL.search(text)
        if label:
            value = label.group(1).strip()
            if value.lower() != VERIFY_MANUALLY:
                merchant = value
            else:
                merchant = "Unknown Merchant"
        if merchant is None and lines:
            merchant = re.sub(r"[^a-zA-Z0-9\s]", "", lines[0]).strip()
        merchant = merchant or "Unknown Merchant"

        totals = TOTAL_PATTERN.findall(text)
        amount = _total_value(totals[-1]) if totals else 0.0

        receipt_date = None
        date_match = RECEIPT_DATE_PATTERN.search(text)
        if date_match:
            receipt_date = normalize_date_value(
                date_match.group(1), today or date.today()
            )

        return ReceiptFields(
            merchant=merchant,
            amount=amount,
            description="Receipt expense",
            date=receipt_date,
            notes="Processed using fallback analysis",
            confidence=CONFIDENCE_FLOOR,
        )

    def synthesize_receipt_text(self, filename: str, today: date) -> str:
        """Placeholder text for an artifact nothing could be read from."""
        lines = [
            f"RECEIPT - {filename}",
            f"Date: {today.isoformat()}",
            "Note: OCR processing failed - please verify details manually",
        ]
        low = filename.lower()
        for keywords, merchant, category in FILENAME_HINTS:
            if any(keyword in low for keyword in keywords):
                lines += [
                    f"Merchant: {merchant}",
                    f"Category: {category}",
                    "Amount: Please verify manually",
                ]
                break
        else:
            lines += [
                "Merchant: Please verify manually",
                "Amount: Please verify manually",
            ]

        return "\n".join(lines)
