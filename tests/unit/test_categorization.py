"""Unit tests for the provider-backed categorization service."""

import asyncio

import pytest

from expense_intake.categorization import CategorizationService
from expense_intake.integrations.anthropic_extractor import (
    CategorizationOutput,
    ExtractionRefusedError,
    ExtractionUnavailableError,
)
from expense_intake.models import ExpenseContext

pytestmark = pytest.mark.unit


@pytest.fixture
def starbucks():
    return ExpenseContext(merchant="Starbucks Downtown", amount=5.50, currency="USD")


class TestWithoutProvider:
    @pytest.mark.asyncio
    async def test_rules_answer_when_no_provider(self, starbucks):
        service = CategorizationService()

        result = await service.categorize_expense(starbucks)

        assert result.category == "Food & Dining"
        assert result.confidence == 0.9
        assert result.suggested_payment_method == "Credit Card"
        assert not service.is_available()

    def test_service_info(self):
        info = CategorizationService().get_service_info()

        assert info["available"] is False
        assert info["provider"] == "rules"


class TestProviderAnswers:
    @pytest.mark.asyncio
    async def test_valid_answer_is_kept(self, fake_extractor, starbucks):
        fake_extractor.categorize_expense.return_value = CategorizationOutput(
            category="Food & Dining",
            confidence=0.95,
            reasoning="Coffee shop",
            suggested_payment_method="Digital Wallet",
        )
        service = CategorizationService(extractor=fake_extractor)

        result = await service.categorize_expense(starbucks)

        assert result.category == "Food & Dining"
        assert result.confidence == 0.95
        assert result.suggested_payment_method == "Digital Wallet"

    @pytest.mark.asyncio
    async def test_unknown_category_is_corrected(self, fake_extractor, starbucks):
        fake_extractor.categorize_expense.return_value = CategorizationOutput(
            category="Beverages", confidence=0.9, reasoning="Sells coffee"
        )
        service = CategorizationService(extractor=fake_extractor)

        result = await service.categorize_expense(starbucks)

        assert result.category == "Other"
        assert result.confidence == pytest.approx(0.72)
        assert "Beverages" in result.reasoning
        assert result.suggested_payment_method == "Credit Card"

    @pytest.mark.asyncio
    async def test_corrected_confidence_has_a_floor(self, fake_extractor, starbucks):
        fake_extractor.categorize_expense.return_value = CategorizationOutput(
            category="Beverages", confidence=0.75, reasoning="Sells coffee"
        )
        service = CategorizationService(extractor=fake_extractor)

        result = await service.categorize_expense(starbucks)

        assert result.confidence == 0.7

    @pytest.mark.asyncio
    async def test_confidence_is_clamped(self, fake_extractor, starbucks):
        fake_extractor.categorize_expense.return_value = CategorizationOutput(
            category="Travel", confidence=3.0, reasoning="Trip"
        )
        service = CategorizationService(extractor=fake_extractor)

        result = await service.categorize_expense(starbucks)

        assert result.confidence == 1.0

    @pytest.mark.asyncio
    async def test_foreign_payment_method_is_replaced(self, fake_extractor, starbucks):
        fake_extractor.categorize_expense.return_value = CategorizationOutput(
            category="Utilities",
            confidence=0.8,
            reasoning="Power bill",
            suggested_payment_method="Cash",
        )
        service = CategorizationService(extractor=fake_extractor)

        result = await service.categorize_expense(starbucks)

        assert result.suggested_payment_method == "Bank Transfer"

    @pytest.mark.asyncio
    async def test_empty_reasoning_falls_back(self, fake_extractor, starbucks):
        fake_extractor.categorize_expense.return_value = CategorizationOutput(
            category="Travel", confidence=0.8, reasoning=""
        )
        service = CategorizationService(extractor=fake_extractor)

        result = await service.categorize_expense(starbucks)

        assert result.category == "Food & Dining"


class TestTotality:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            ExtractionUnavailableError("offline"),
            ExtractionRefusedError("no"),
            asyncio.TimeoutError(),
            RuntimeError("unexpected"),
        ],
    )
    async def test_provider_failures_degrade_to_rules(
        self, fake_extractor, starbucks, rules, error
    ):
        fake_extractor.categorize_expense.side_effect = error
        service = CategorizationService(extractor=fake_extractor)

        result = await service.categorize_expense(starbucks)

        assert result == rules.categorize(starbucks)

    @pytest.mark.asyncio
    async def test_batch_keeps_positions(self, fake_extractor):
        async def categorize(expense, categories):
            if expense.merchant == "Broken":
                raise ExtractionUnavailableError("offline")
            await asyncio.sleep(0.01 if expense.merchant == "Slow" else 0)
            return CategorizationOutput(
                category="Travel", confidence=0.8, reasoning=expense.merchant
            )

        fake_extractor.categorize_expense.side_effect = categorize
        service = CategorizationService(extractor=fake_extractor)
        expenses = [
            ExpenseContext(merchant="Slow", amount=1),
            ExpenseContext(merchant="Broken", amount=2),
            ExpenseContext(merchant="Fast", amount=3),
        ]

        results = await service.categorize_expenses_batch(expenses)

        assert [r.reasoning for r in (results[0], results[2])] == ["Slow", "Fast"]
        assert results[1].category == "Other"
        assert len(results) == 3


class TestSuggestions:
    @pytest.mark.asyncio
    async def test_provider_suggestions_are_filtered_and_padded(self, fake_extractor):
        fake_extractor.suggest_categories.return_value = ["Travel", "Flights"]
        service = CategorizationService(extractor=fake_extractor)

        result = await service.get_category_suggestions("Delta Airlines")

        assert result == ["Travel", "Other", "Entertainment"]

    @pytest.mark.asyncio
    async def test_provider_failure_returns_rule_suggestions(
        self, fake_extractor, rules
    ):
        fake_extractor.suggest_categories.side_effect = ExtractionUnavailableError(
            "down"
        )

        service = CategorizationService(extractor=fake_extractor)

        result = await service.get_category_suggestions("Uber")

        assert result == rules.suggest_categories("Uber")

    @pytest.mark.asyncio
    async def test_empty_merchant_skips_provider(self, fake_extractor):
        service = CategorizationService(extractor=fake_extractor)

        result = await service.get_category_suggestions("  ")

        assert len(result) == 3
        fake_extractor.suggest_categories.assert_not_called()
