"""
Integration tests against the live Anthropic API.

Requires ANTHROPIC_API_KEY. Run with: pytest -m integration
"""

import os

import pytest

from expense_intake.categorization import CategorizationService
from expense_intake.conversation import ConversationController
from expense_intake.integrations.anthropic_extractor import AnthropicExtractor
from expense_intake.models import ConversationStep, ExpenseContext
from tests.integration.utils import skip_if_missing_env_vars
from tests.utils import FIXED_TODAY

pytestmark = pytest.mark.integration


@pytest.fixture
def extractor():
    return AnthropicExtractor(api_key=os.getenv("ANTHROPIC_API_KEY", ""))


@pytest.mark.asyncio
@skip_if_missing_env_vars(["ANTHROPIC_API_KEY"])
async def test_categorize_coffee_shop(extractor):
    service = CategorizationService(extractor=extractor)

    result = await service.categorize_expense(
        ExpenseContext(merchant="Starbucks", amount=5.5, description="Latte")
    )

    assert result.category == "Food & Dining"
    assert 0.7 <= result.confidence <= 1.0


@pytest.mark.asyncio
@skip_if_missing_env_vars(["ANTHROPIC_API_KEY"])
async def test_conversation_turn(extractor):
    controller = ConversationController(extractor=extractor, today=lambda: FIXED_TODAY)
    context = controller.initialize_conversation()

    response = await controller.process_message(
        "I spent $12 at McDonald's for lunch yesterday", context
    )

    assert float(response.extracted_data.amount) == 12.0
    assert response.extracted_data.date == "2026-10-17"
    assert response.next_step in (
        ConversationStep.CONFIRMING,
        ConversationStep.COLLECTING,
    )
