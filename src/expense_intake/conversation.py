"""Conversational expense entry: a slot-filling state machine over chat turns."""

import asyncio
import logging
import re
from collections.abc import Callable, Sequence
from datetime import date
from typing import Any

from expense_intake.integrations.anthropic_extractor import AnthropicExtractor
from expense_intake.models import (
    Category,
    ChatMessage,
    ConversationContext,
    ConversationResponse,
    ConversationStep,
    ExpenseContext,
    ExpenseDraft,
    default_category_snapshot,
)
from expense_intake.results import Failure, capture
from expense_intake.rules import RuleBasedExtractor
from expense_intake.utils.dates import normalize_date_value

logger = logging.getLogger(__name__)

GREETING = (
    "Hi! Tell me about an expense, for example "
    "\"I spent $12 at McDonald's for lunch yesterday\"."
)
EDIT_ACTIONS = ["Change amount", "Change merchant", "Change date"]
CONFIRM_ACTIONS = ["Save expense", "Make changes"]

AFFIRMATIVE = re.compile(
    r"\b(?:yes|yeah|yep|yup|sure|ok|okay|save|confirm|correct|"
    r"looks good|sounds good|go ahead)\b",
    re.IGNORECASE,
)
NEGATIVE = re.compile(
    r"\b(?:no|nope|nah|change|edit|update|fix|wrong|modify)\b", re.IGNORECASE
)

_MISSING_PROMPTS = {
    ("amount", "merchant"): "the amount and where you spent it",
    ("amount",): "how much you spent",
    ("merchant",): "where you spent it",
}


def describe_expense(draft: ExpenseDraft) -> str:
    """Short human summary, e.g. ``$12 at McDonald's for lunch on 2026-01-01``."""
    parts = []
    if draft.amount:
        parts.append(f"${draft.amount}")
    if draft.merchant:
        parts.append(f"at {draft.merchant}")
    if draft.description:
        parts.append(f"for {draft.description}")
    if draft.date:
        parts.append(f"on {draft.date}")
    summary = " ".join(parts) or "an expense"
    if draft.category:
        summary += f", {draft.category} category"
    return summary


def _amount_value(draft: ExpenseDraft) -> float:
    try:
        return max(float((draft.amount or "0").replace(",", "")), 0.0)
    except ValueError:
        return 0.0


class ConversationController:
    """
    Decides the reply and next step for one chat turn.

    Stateless between calls: ``process_message`` reads the context and
    returns a response; applying it is the session's job. With an extractor
    the decision is made by the completion provider, and any provider
    failure drops to the deterministic procedure.
    """

    def __init__(
        self,
        extractor: AnthropicExtractor | None = None,
        rules: RuleBasedExtractor | None = None,
        history_limit: int = 10,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.extractor = extractor
        self.rules = rules or RuleBasedExtractor()
        self.history_limit = history_limit
        self.today = today

    def is_available(self) -> bool:
        return self.extractor is not None

    def initialize_conversation(
        self, categories: Sequence[Category] | None = None
    ) -> ConversationContext:
        return ConversationContext(
            messages=[ChatMessage(role="assistant", content=GREETING)],
            available_categories=(
                list(categories)
                if categories is not None
                else default_category_snapshot()
            ),
        )

    async def process_message(
        self, message: str, context: ConversationContext
    ) -> ConversationResponse:
        """
        Process one user message against the session context.

        Returns:
            ConversationResponse whose ``extracted_data`` is already merged
            over ``context.current_expense``
        """
        if context.conversation_step is ConversationStep.COMPLETE:
            return self._completed(context.current_expense)

        if self.extractor is not None:
            outcome = await capture(
                "completion",
                self.extractor.converse(
                    message, context, self.today(), self.history_limit
                ),
                stage="converse",
            )
            if not isinstance(outcome, Failure):
                return self._reconcile(outcome.value, context)
            logger.warning("Conversation fell back to rules: %s", outcome.describe())

        return self.respond_deterministically(message, context)

    def _clean_draft(
        self, draft: ExpenseDraft, context: ConversationContext
    ) -> ExpenseDraft:
        """Drop provider values that cannot be stored as-is."""
        updates: dict[str, Any] = {}
        if draft.date is not None:
            updates["date"] = normalize_date_value(draft.date, self.today())
        if draft.category is not None and draft.category not in context.category_names:
            updates["category"] = None
        if draft.amount is not None:
            amount = draft.amount.lstrip("$").replace(",", "").strip()
            updates["amount"] = amount or None
        return draft.model_copy(update=updates)

    def _reconcile(
        self, response: ConversationResponse, context: ConversationContext
    ) -> ConversationResponse:
        merged = context.current_expense.merged_with(
            self._clean_draft(response.extracted_data, context)
        )
        next_step = response.next_step
        if next_step in (ConversationStep.CONFIRMING, ConversationStep.COMPLETE) and (
            not merged.has_required_fields
        ):
            next_step = ConversationStep.COLLECTING
        if next_step is ConversationStep.INITIAL:
            next_step = ConversationStep.COLLECTING

        is_complete = next_step is ConversationStep.COMPLETE
        return ConversationResponse(
            message=response.message,
            extracted_data=merged,
            next_step=next_step,
            is_complete=is_complete,
            needs_user_input=not is_complete,
            suggested_actions=response.suggested_actions,
        )

    def respond_deterministically(
        self, message: str, context: ConversationContext
    ) -> ConversationResponse:
        """Keyword and pattern based turn handling, used without a provider."""
        step = context.conversation_step
        current = context.current_expense
        if step is ConversationStep.COMPLETE:
            return self._completed(current)

        extracted = self.rules.extract_message_fields(
            message, self.today(), context.category_names
        )
        merged = current.merged_with(extracted)

        if step is ConversationStep.CONFIRMING:
            if NEGATIVE.search(message):
                return self._reply(
                    "What would you like to change?",
                    merged,
                    ConversationStep.EDITING,
                    EDIT_ACTIONS,
                )
            if AFFIRMATIVE.search(message):
                return self._reply(
                    "Perfect! Your expense is ready to save.",
                    merged,
                    ConversationStep.COMPLETE,
                )
            return self._reply(
                "Should I save this expense? "
                "Say 'yes' to confirm or 'no' to make changes.",
                merged,
                ConversationStep.CONFIRMING,
                CONFIRM_ACTIONS,
            )

        if step is ConversationStep.EDITING:
            if not extracted.filled_fields():
                return self._reply(
                    "What would you like to change? You can update the amount, "
                    "merchant, description, date or category.",
                    merged,
                    ConversationStep.EDITING,
                    EDIT_ACTIONS,
                )
            updated = ", ".join(extracted.filled_fields())
            return self._reply(
                f"Updated the {updated}. "
                f"Here's your expense: {describe_expense(merged)}. "
                "Should I save this now?",
                merged,
                ConversationStep.CONFIRMING,
                CONFIRM_ACTIONS,
            )

        # initial / collecting
        if not merged.has_required_fields:
            missing = tuple(merged.missing_required_fields())
            return self._reply(
                f"I need more details. Please tell me {_MISSING_PROMPTS[missing]}.",
                merged,
                ConversationStep.COLLECTING,
            )

        message_text = f"Great! I found: {describe_expense(merged)}."
        if merged.category is None:
            suggestion = self.rules.categorize(
                ExpenseContext(
                    merchant=merged.merchant,
                    amount=_amount_value(merged),
                    description=merged.description,
                )
            )
            merged = merged.model_copy(update={"category": suggestion.category})
            message_text += f" I'd suggest '{suggestion.category}' category."
        return self._reply(
            f"{message_text} Should I save this expense?",
            merged,
            ConversationStep.CONFIRMING,
            CONFIRM_ACTIONS,
        )

    def _reply(
        self,
        message: str,
        draft: ExpenseDraft,
        next_step: ConversationStep,
        suggested_actions: list[str] | None = None,
    ) -> ConversationResponse:
        is_complete = next_step is ConversationStep.COMPLETE
        return ConversationResponse(
            message=message,
            extracted_data=draft,
            next_step=next_step,
            is_complete=is_complete,
            needs_user_input=not is_complete,
            suggested_actions=suggested_actions,
        )

    def _completed(self, draft: ExpenseDraft) -> ConversationResponse:
        return self._reply(
            f"This expense is complete: {describe_expense(draft)}.",
            draft,
            ConversationStep.COMPLETE,
        )

    def get_service_info(self) -> dict[str, Any]:
        info: dict[str, Any] = {
            "available": self.is_available(),
            "provider": "anthropic" if self.extractor else "rules",
            "history_limit": self.history_limit,
        }
        if self.extractor is not None:
            info["model"] = self.extractor.model
        return info


class ConversationSession:
    """
    One chat session: owns its context and applies each turn's result.

    Turns are serialized, so concurrent ``send`` calls observe each other's
    updates in order.
    """

    def __init__(
        self,
        controller: ConversationController,
        context: ConversationContext | None = None,
        categories: Sequence[Category] | None = None,
    ) -> None:
        self.controller = controller
        self.context = context or controller.initialize_conversation(categories)
        self._lock = asyncio.Lock()

    @property
    def is_complete(self) -> bool:
        return self.context.conversation_step is ConversationStep.COMPLETE

    @property
    def expense(self) -> ExpenseDraft:
        return self.context.current_expense

    async def send(self, message: str) -> ConversationResponse:
        async with self._lock:
            response = await self.controller.process_message(message, self.context)
            self.context = self.context.model_copy(
                update={
                    "messages": [
                        *self.context.messages,
                        ChatMessage(role="user", content=message),
                        ChatMessage(role="assistant", content=response.message),
                    ],
                    "current_expense": response.extracted_data,
                    "conversation_step": response.next_step,
                }
            )
            return response
