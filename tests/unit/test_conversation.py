"""Unit tests for conversational expense entry."""

import asyncio

import pytest

from expense_intake.conversation import (
    GREETING,
    ConversationController,
    ConversationSession,
    describe_expense,
)
from expense_intake.integrations.anthropic_extractor import ExtractionUnavailableError
from expense_intake.models import (
    Category,
    ConversationContext,
    ConversationResponse,
    ConversationStep,
    ExpenseDraft,
)
from tests.utils import FIXED_TODAY

pytestmark = pytest.mark.unit


@pytest.fixture
def controller():
    return ConversationController(today=lambda: FIXED_TODAY)


def context_at(step, **expense):
    return ConversationContext(
        conversation_step=step, current_expense=ExpenseDraft(**expense)
    )


class TestInitialization:
    def test_greeting_and_default_categories(self, controller):
        context = controller.initialize_conversation()

        assert [m.role for m in context.messages] == ["assistant"]
        assert context.messages[0].content == GREETING
        assert context.conversation_step is ConversationStep.INITIAL
        assert "Food & Dining" in context.category_names
        assert context.current_expense == ExpenseDraft()

    def test_custom_categories(self, controller):
        context = controller.initialize_conversation(
            [Category(id="1", name="Coffee"), Category(id="2", name="Rent")]
        )

        assert context.category_names == ["Coffee", "Rent"]


class TestCollecting:
    @pytest.mark.asyncio
    async def test_full_sentence_moves_to_confirming(self, controller):
        context = controller.initialize_conversation()

        response = await controller.process_message(
            "I spent $12 at McDonald's for lunch yesterday", context
        )

        draft = response.extracted_data
        assert draft.amount == "12"
        assert draft.merchant == "McDonald's"
        assert draft.description == "lunch"
        assert draft.date == "2026-10-17"
        assert draft.category == "Food & Dining"
        assert response.next_step is ConversationStep.CONFIRMING
        assert response.needs_user_input is True
        assert "Food & Dining" in response.message
        assert response.message.endswith("Should I save this expense?")

    @pytest.mark.asyncio
    async def test_asks_for_both_required_fields(self, controller):
        context = controller.initialize_conversation()

        response = await controller.process_message("I bought lunch", context)

        assert response.next_step is ConversationStep.COLLECTING
        assert "the amount and where you spent it" in response.message

    @pytest.mark.asyncio
    async def test_asks_for_missing_merchant(self, controller):
        context = context_at(ConversationStep.COLLECTING, description="lunch")

        response = await controller.process_message("it was $20", context)

        assert response.next_step is ConversationStep.COLLECTING
        assert response.extracted_data.amount == "20"
        assert response.extracted_data.description == "lunch"
        assert "where you spent it" in response.message

    @pytest.mark.asyncio
    async def test_fields_are_never_cleared(self, controller):
        context = context_at(
            ConversationStep.COLLECTING, amount="20", description="lunch"
        )

        response = await controller.process_message("at Subway", context)

        assert response.extracted_data.amount == "20"
        assert response.extracted_data.description == "lunch"
        assert response.extracted_data.merchant == "Subway"

    @pytest.mark.asyncio
    async def test_out_of_range_date_offset_is_left_blank(self, controller):
        context = controller.initialize_conversation()

        response = await controller.process_message(
            "I spent $5 at Cafe Nero 99999999 days ago", context
        )

        assert response.extracted_data.amount == "5"
        assert response.extracted_data.date is None


class TestConfirming:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", ["yes", "Yes, save it", "looks good"])
    async def test_affirmative_completes(self, controller, reply):
        context = context_at(ConversationStep.CONFIRMING, amount="12", merchant="Cafe")

        response = await controller.process_message(reply, context)

        assert response.next_step is ConversationStep.COMPLETE
        assert response.is_complete is True
        assert response.needs_user_input is False

    @pytest.mark.asyncio
    async def test_negative_goes_to_editing(self, controller):
        context = context_at(ConversationStep.CONFIRMING, amount="12", merchant="Cafe")

        response = await controller.process_message("no, change it", context)

        assert response.next_step is ConversationStep.EDITING
        assert response.suggested_actions

    @pytest.mark.asyncio
    async def test_negative_wins_over_affirmative(self, controller):
        context = context_at(ConversationStep.CONFIRMING, amount="12", merchant="Cafe")

        response = await controller.process_message("ok but fix the amount", context)

        assert response.next_step is ConversationStep.EDITING

    @pytest.mark.asyncio
    async def test_unclear_reply_asks_again(self, controller):
        context = context_at(ConversationStep.CONFIRMING, amount="12", merchant="Cafe")

        response = await controller.process_message("hmm", context)

        assert response.next_step is ConversationStep.CONFIRMING
        assert "Should I save this expense?" in response.message


class TestEditing:
    @pytest.mark.asyncio
    async def test_new_value_returns_to_confirming(self, controller):
        context = context_at(ConversationStep.EDITING, amount="12", merchant="Cafe")

        response = await controller.process_message("make it $15", context)

        assert response.next_step is ConversationStep.CONFIRMING
        assert response.extracted_data.amount == "15"
        assert response.extracted_data.merchant == "Cafe"
        assert response.message.startswith("Updated the amount.")

    @pytest.mark.asyncio
    async def test_no_fields_stays_in_editing(self, controller):
        context = context_at(ConversationStep.EDITING, amount="12", merchant="Cafe")

        response = await controller.process_message("hmm let me think", context)

        assert response.next_step is ConversationStep.EDITING
        assert response.extracted_data.amount == "12"


class TestComplete:
    @pytest.mark.asyncio
    async def test_complete_is_terminal(self, controller):
        context = context_at(ConversationStep.COMPLETE, amount="12", merchant="Cafe")

        response = await controller.process_message("$99 at Target", context)

        assert response.next_step is ConversationStep.COMPLETE
        assert response.extracted_data == context.current_expense

    @pytest.mark.asyncio
    async def test_complete_skips_provider(self, fake_extractor):
        controller = ConversationController(extractor=fake_extractor)
        context = context_at(ConversationStep.COMPLETE, amount="12", merchant="Cafe")

        await controller.process_message("anything", context)

        fake_extractor.converse.assert_not_called()


class TestProviderPath:
    def provider_response(self, step, **expense):
        return ConversationResponse(
            message="Got it!",
            extracted_data=ExpenseDraft(**expense),
            next_step=step,
            is_complete=step is ConversationStep.COMPLETE,
            needs_user_input=step is not ConversationStep.COMPLETE,
        )

    @pytest.mark.asyncio
    async def test_provider_values_are_cleaned(self, fake_extractor):
        fake_extractor.converse.return_value = self.provider_response(
            ConversationStep.CONFIRMING,
            amount="$1,200",
            merchant="Apple Store",
            date="yesterday",
            category="Gadgets",
        )
        controller = ConversationController(
            extractor=fake_extractor, today=lambda: FIXED_TODAY
        )
        context = controller.initialize_conversation()

        response = await controller.process_message("new laptop", context)

        draft = response.extracted_data
        assert draft.amount == "1200"
        assert draft.merchant == "Apple Store"
        assert draft.date == "2026-10-17"
        assert draft.category is None
        assert response.message == "Got it!"
        assert response.next_step is ConversationStep.CONFIRMING
        fake_extractor.converse.assert_awaited_once_with(
            "new laptop", context, FIXED_TODAY, 10
        )

    @pytest.mark.asyncio
    async def test_provider_date_out_of_range(self, fake_extractor):
        fake_extractor.converse.return_value = self.provider_response(
            ConversationStep.CONFIRMING,
            amount="5",
            merchant="Cafe Nero",
            date="99999999 days ago",
        )
        controller = ConversationController(
            extractor=fake_extractor, today=lambda: FIXED_TODAY
        )
        context = controller.initialize_conversation()

        response = await controller.process_message("coffee", context)

        assert response.extracted_data.merchant == "Cafe Nero"
        assert response.extracted_data.date is None

    @pytest.mark.asyncio
    async def test_cannot_complete_without_required_fields(self, fake_extractor):
        fake_extractor.converse.return_value = self.provider_response(
            ConversationStep.COMPLETE, merchant="Cafe"
        )
        controller = ConversationController(extractor=fake_extractor)
        context = controller.initialize_conversation()

        response = await controller.process_message("save it", context)

        assert response.next_step is ConversationStep.COLLECTING
        assert response.is_complete is False
        assert response.needs_user_input is True

    @pytest.mark.asyncio
    async def test_provider_merge_keeps_existing_fields(self, fake_extractor):
        fake_extractor.converse.return_value = self.provider_response(
            ConversationStep.CONFIRMING, merchant="Cafe"
        )
        controller = ConversationController(extractor=fake_extractor)
        context = context_at(ConversationStep.COLLECTING, amount="8", notes="team")

        response = await controller.process_message("at Cafe", context)

        assert response.extracted_data.amount == "8"
        assert response.extracted_data.notes == "team"
        assert response.next_step is ConversationStep.CONFIRMING

    @pytest.mark.asyncio
    async def test_provider_failure_uses_rules(self, fake_extractor):
        fake_extractor.converse.side_effect = ExtractionUnavailableError("down")
        controller = ConversationController(
            extractor=fake_extractor, today=lambda: FIXED_TODAY
        )
        context = controller.initialize_conversation()

        response = await controller.process_message(
            "I spent $12 at McDonald's for lunch yesterday", context
        )

        assert response.next_step is ConversationStep.CONFIRMING
        assert response.extracted_data.merchant == "McDonald's"

    def test_service_info(self, fake_extractor):
        info = ConversationController(extractor=fake_extractor).get_service_info()

        assert info["available"] is True
        assert info["model"] == "claude-haiku-4-5"


class TestSession:
    @pytest.mark.asyncio
    async def test_send_applies_turn(self, controller):
        session = ConversationSession(controller)

        await session.send("I spent $12 at McDonald's for lunch yesterday")

        messages = session.context.messages
        assert [m.role for m in messages] == ["assistant", "user", "assistant"]
        assert session.context.conversation_step is ConversationStep.CONFIRMING
        assert session.expense.amount == "12"
        assert not session.is_complete

    @pytest.mark.asyncio
    async def test_full_dialogue(self, controller):
        session = ConversationSession(controller)

        await session.send("I spent $12 for lunch")
        await session.send("at Subway")
        response = await session.send("yes")

        assert response.is_complete
        assert session.is_complete
        assert session.expense.merchant == "Subway"
        assert len(session.context.messages) == 7

    @pytest.mark.asyncio
    async def test_concurrent_sends_are_serialized(self, controller):
        session = ConversationSession(controller)

        first, second = await asyncio.gather(
            session.send("I spent $12 for lunch"), session.send("at Subway")
        )

        assert first.next_step is ConversationStep.COLLECTING
        assert second.next_step is ConversationStep.CONFIRMING
        assert second.extracted_data.amount == "12"
        assert [m.content for m in session.context.messages[1::2]] == [
            "I spent $12 for lunch",
            "at Subway",
        ]


def test_describe_expense():
    draft = ExpenseDraft(amount="12", merchant="Cafe", category="Food & Dining")

    assert describe_expense(draft) == "$12 at Cafe, Food & Dining category"
