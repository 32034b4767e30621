"""Expense categorization backed by the completion provider, with rule fallback."""

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from expense_intake.categories import (
    CORRECTION_PENALTY,
    DEFAULT_CATEGORIES,
    OTHER_CATEGORY,
    clamp_confidence,
    is_known_category,
    resolve_payment_method,
)
from expense_intake.integrations.anthropic_extractor import (
    AnthropicExtractor,
    CategorizationOutput,
)
from expense_intake.models import ExpenseContext, ExtractionResult
from expense_intake.results import Failure, capture
from expense_intake.rules import MAX_SUGGESTIONS, RuleBasedExtractor

logger = logging.getLogger(__name__)

PROVIDER = "completion"


class CategorizationService:
    """
    Categorizes expenses and suggests categories.

    Every public method is total: provider failures of any kind are logged
    and answered by the rule-based extractor instead of being raised.
    """

    def __init__(
        self,
        extractor: AnthropicExtractor | None = None,
        rules: RuleBasedExtractor | None = None,
        categories: Sequence[str] = DEFAULT_CATEGORIES,
    ) -> None:
        self.extractor = extractor
        self.rules = rules or RuleBasedExtractor()
        self.categories = tuple(categories)

    def is_available(self) -> bool:
        return self.extractor is not None

    async def categorize_expense(self, expense: ExpenseContext) -> ExtractionResult:
        if self.extractor is None:
            return self.rules.categorize(expense)

        outcome = await capture(
            PROVIDER,
            self.extractor.categorize_expense(expense, self.categories),
            stage="categorize",
        )
        if isinstance(outcome, Failure):
            logger.warning(
                "Categorization for %r fell back to rules: %s",
                expense.merchant,
                outcome.describe(),
            )
            return self.rules.categorize(expense)

        result = self._normalize(outcome.value)
        if result is None:
            logger.warning(
                "Incomplete categorization for %r, using rules", expense.merchant
            )
            return self.rules.categorize(expense)
        return result

    def _normalize(self, raw: CategorizationOutput) -> ExtractionResult | None:
        """Coerce a provider answer into registry bounds; None if fields are missing."""
        category = raw.category.strip()
        reasoning = raw.reasoning.strip()
        if not category or not reasoning:
            return None

        confidence = raw.confidence
        if not is_known_category(category):
            logger.info(
                "Provider suggested unknown category %r, correcting to %s",
                category,
                OTHER_CATEGORY,
            )
            reasoning = (
                f"AI suggested '{category}', which is not a known category; "
                f"using {OTHER_CATEGORY}. {reasoning}"
            )
            confidence *= CORRECTION_PENALTY
            category = OTHER_CATEGORY

        return ExtractionResult(
            category=category,
            confidence=clamp_confidence(confidence),
            reasoning=reasoning,
            suggested_payment_method=resolve_payment_method(
                category, raw.suggested_payment_method
            ),
        )

    async def categorize_expenses_batch(
        self, expenses: Sequence[ExpenseContext]
    ) -> list[ExtractionResult]:
        """Categorize concurrently; result ``i`` belongs to ``expenses[i]``."""
        results = await asyncio.gather(*(self.categorize_expense(e) for e in expenses))
        return list(results)

    async def get_category_suggestions(self, merchant: str) -> list[str]:
        fallback = self.rules.suggest_categories(merchant)
        if self.extractor is None or not merchant.strip():
            return fallback

        outcome = await capture(
            PROVIDER,
            self.extractor.suggest_categories(
                merchant, self.categories, MAX_SUGGESTIONS
            ),
            stage="suggest",
        )
        if isinstance(outcome, Failure):
            return fallback

        suggestions: list[str] = []
        for name in [*outcome.value, *fallback]:
            if is_known_category(name) and name not in suggestions:
                suggestions.append(name)
        return suggestions[:MAX_SUGGESTIONS]

    def get_service_info(self) -> dict[str, Any]:
        info: dict[str, Any] = {
            "available": self.is_available(),
            "provider": "anthropic" if self.extractor else "rules",
            "categories": list(self.categories),
        }
        if self.extractor is not None:
            info["model"] = self.extractor.model
        return info
