"""Anthropic API integration: structured outputs and tool use for expenses."""

import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import date
from pathlib import Path
from typing import Any, TypeVar

import anthropic
from anthropic import AsyncAnthropic
from anthropic.types.beta import (
    BetaCacheControlEphemeralParam,
    BetaMessageParam,
    BetaTextBlockParam,
)
from jinja2 import Environment, FileSystemLoader, select_autoescape
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from expense_intake.categories import DEFAULT_CATEGORIES, PAYMENT_METHODS
from expense_intake.errors import FailureKind, ProviderError
from expense_intake.models import (
    ChatMessage,
    ConversationContext,
    ConversationResponse,
    ConversationStep,
    ExpenseContext,
    ReceiptFields,
)

logger = logging.getLogger(__name__)

STRUCTURED_OUTPUTS_BETA = "structured-outputs-2025-11-13"
CONVERSATION_TOOL_NAME = "process_expense_conversation"

# Errors worth another attempt; everything else fails fast into the fallback chain.
TRANSIENT_ERRORS = (
    anthropic.APIConnectionError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
)

ModelT = TypeVar("ModelT", bound=BaseModel)
T = TypeVar("T")


def _field(kind: str, description: str) -> dict[str, str]:
    return {"type": kind, "description": description}


CONVERSATION_TOOL: dict[str, Any] = {
    "name": CONVERSATION_TOOL_NAME,
    "description": "Process the user's message and extract expense information",
    "input_schema": {
        "type": "object",
        "properties": {
            "message": _field("string", "Natural reply to the user"),
            "extractedData": {
                "type": "object",
                "properties": {
                    "amount": _field("string", "Expense amount (numbers only)"),
                    "merchant": _field("string", "Merchant or business name"),
                    "description": _field("string", "What was purchased"),
                    "date": _field("string", "Date in YYYY-MM-DD format"),
                    "category": _field("string", "Expense category"),
                    "notes": _field("string", "Additional notes"),
                },
            },
            "nextStep": {
                "type": "string",
                "enum": [step.value for step in ConversationStep],
                "description": "Next conversation step",
            },
            "isComplete": _field("boolean", "Whether the expense is ready to save"),
            "needsUserInput": _field("boolean", "Whether user input is needed"),
            "suggestedActions": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Suggested follow-up actions for the user",
            },
        },
        "required": [
            "message",
            "extractedData",
            "nextStep",
            "isComplete",
            "needsUserInput",
        ],
    },
}


class ExtractionError(ProviderError):
    """Base exception for completion-service errors."""

    kind = FailureKind.MALFORMED


class ExtractionRefusedError(ExtractionError):
    """Raised when the model refuses to process the request."""

    kind = FailureKind.REFUSED


class ExtractionIncompleteError(ExtractionError):
    """Raised when the response is truncated due to token limits."""

    kind = FailureKind.INCOMPLETE


class ExtractionUnavailableError(ExtractionError):
    """Raised when the completion service is unreachable or answers with an error."""

    kind = FailureKind.NETWORK


class CategorizationOutput(BaseModel):
    """Raw categorization as returned by the model, before registry validation."""

    category: str
    confidence: float
    reasoning: str
    suggested_payment_method: str | None = None


class CategorySuggestions(BaseModel):
    categories: list[str]


def _conversation_messages(
    history: Sequence[ChatMessage], user_message: str, limit: int
) -> list[dict[str, str]]:
    """Build an alternating user/assistant message list ending with *user_message*."""
    turns = [m for m in history if m.role != "system"][-limit:]
    turns.append(ChatMessage(role="user", content=user_message))

    messages: list[dict[str, str]] = []
    for turn in turns:
        if not messages and turn.role != "user":
            continue
        if messages and messages[-1]["role"] == turn.role:
            messages[-1]["content"] += "\n\n" + turn.content
            continue
        messages.append({"role": turn.role, "content": turn.content})
    return messages


class AnthropicExtractor:
    """
    Anthropic-powered expense extractor.

    Uses Claude's structured outputs feature (beta) for categorization and
    receipt analysis, and a forced tool call for conversational turns. Every
    SDK failure is re-raised as an ``ExtractionError`` subclass carrying a
    ``FailureKind``, so callers can fall back without inspecting SDK types.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-haiku-4-5",
        max_tokens: int = 1024,
        temperature: float = 0.0,
        timeout: float = 20.0,
        max_attempts: int = 2,
        retry_delay: float = 1.0,
        prompts_dir: str | None = None,
        client: AsyncAnthropic | None = None,
    ) -> None:
        """
        Initialize the Anthropic extractor.

        Args:
            api_key: Anthropic API key
            model: Model to use (default: claude-haiku-4-5)
            max_tokens: Maximum tokens for response (default: 1024)
            temperature: Sampling temperature (default: 0.0 for deterministic)
            timeout: Per-request timeout in seconds
            max_attempts: Attempts per call for transient errors
            retry_delay: Fixed delay between attempts in seconds
            prompts_dir: Directory containing Jinja2 templates (default: prompts/)
            client: Optional pre-configured AsyncAnthropic client
        """
        # Retries happen in _call; the SDK's own are disabled.
        self.client = client or AsyncAnthropic(
            api_key=api_key, timeout=timeout, max_retries=0
        )
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

        if prompts_dir is None:
            prompts_dir = str(Path(__file__).parent.parent / "prompts")

        self.jinja_env = Environment(
            loader=FileSystemLoader(prompts_dir),
            autoescape=select_autoescape(),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def _render(self, template_name: str, **context: Any) -> str:
        return self.jinja_env.get_template(template_name).render(**context)

    async def _call(self, method: Callable[..., Awaitable[T]], **kwargs: Any) -> T:
        """Await *method* with bounded fixed-delay retries, translating SDK errors."""
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.retry_delay),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await method(**kwargs)
        except anthropic.APITimeoutError as e:
            raise ExtractionUnavailableError(
                "Completion request timed out", kind=FailureKind.TIMEOUT
            ) from e
        except anthropic.APIConnectionError as e:
            raise ExtractionUnavailableError(
                f"Completion service unreachable: {e}"
            ) from e
        except anthropic.APIStatusError as e:
            raise ExtractionUnavailableError(
                f"Completion service returned {e.status_code}",
                kind=FailureKind.HTTP_STATUS,
            ) from e
        except ValueError as e:
            # Structured output that does not validate against the schema
            raise ExtractionError(f"Completion output did not match schema: {e}") from e

    def _check_stop_reason(self, stop_reason: str | None) -> None:
        if stop_reason == "refusal":
            raise ExtractionRefusedError("Model refused to process the request")
        if stop_reason == "max_tokens":
            raise ExtractionIncompleteError(
                "Response truncated due to token limit. Try increasing max_tokens."
            )

    async def _parse(
        self,
        system_template: str,
        user_template: str,
        output_format: type[ModelT],
        **context: Any,
    ) -> ModelT:
        system_prompt = self._render(system_template, **context)
        user_prompt = self._render(user_template, **context)
        messages: list[BetaMessageParam] = [{"role": "user", "content": user_prompt}]

        response = await self._call(
            self.client.beta.messages.parse,
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            betas=[STRUCTURED_OUTPUTS_BETA],
            system=[
                BetaTextBlockParam(
                    type="text",
                    text=system_prompt,
                    cache_control=BetaCacheControlEphemeralParam(type="ephemeral"),
                )
            ],
            messages=messages,
            output_format=output_format,
        )
        self._check_stop_reason(response.stop_reason)

        parsed = response.parsed_output
        if not isinstance(parsed, output_format):
            name = output_format.__name__
            raise ExtractionError(f"Response did not contain a {name}")
        return parsed

    async def categorize_expense(
        self, expense: ExpenseContext, categories: Sequence[str] = DEFAULT_CATEGORIES
    ) -> CategorizationOutput:
        return await self._parse(
            "categorize_system.jinja2",
            "categorize_user.jinja2",
            CategorizationOutput,
            expense=expense,
            categories=categories,
            payment_methods=PAYMENT_METHODS,
        )

    async def suggest_categories(
        self,
        merchant: str,
        categories: Sequence[str] = DEFAULT_CATEGORIES,
        limit: int = 3,
    ) -> list[str]:
        output = await self._parse(
            "categorize_system.jinja2",
            "suggestions_user.jinja2",
            CategorySuggestions,
            merchant=merchant,
            categories=categories,
            limit=limit,
        )
        return output.categories

    async def analyze_receipt_text(self, text: str) -> ReceiptFields:
        return await self._parse(
            "receipt_system.jinja2", "receipt_user.jinja2", ReceiptFields, text=text
        )

    async def extract_spoken_expense(self, text: str, today: date) -> ReceiptFields:
        return await self._parse(
            "receipt_system.jinja2",
            "spoken_user.jinja2",
            ReceiptFields,
            text=text,
            today=today.isoformat(),
        )

    async def converse(
        self,
        user_message: str,
        context: ConversationContext,
        today: date,
        history_limit: int = 10,
    ) -> ConversationResponse:
        """
        Run one conversational turn through a forced tool call.

        Returns:
            The tool payload as a ConversationResponse. ``extracted_data`` holds
            only what the model extracted from this turn; merging is the caller's job.

        Raises:
            ExtractionError: If the call fails or the tool payload is malformed
        """
        system_prompt = self._render(
            "conversation_system.jinja2",
            today=today.isoformat(),
            step=context.conversation_step.value,
            current_expense=json.dumps(
                context.current_expense.model_dump(by_alias=True, exclude_none=True)
            ),
            categories=context.category_names,
            tool_name=CONVERSATION_TOOL_NAME,
        )
        messages = _conversation_messages(context.messages, user_message, history_limit)

        response = await self._call(
            self.client.messages.create,
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=0.3,
            system=system_prompt,
            messages=messages,
            tools=[CONVERSATION_TOOL],
            tool_choice={"type": "tool", "name": CONVERSATION_TOOL_NAME},
        )
        self._check_stop_reason(response.stop_reason)

        tool_call = next(
            (
                block
                for block in response.content
                if getattr(block, "type", None) == "tool_use"
                and getattr(block, "name", None) == CONVERSATION_TOOL_NAME
            ),
            None,
        )
        if tool_call is None:
            raise ExtractionError("No tool call in conversation response")

        try:
            return ConversationResponse.model_validate(tool_call.input)
        except ValueError as e:
            raise ExtractionError(f"Malformed conversation payload: {e}") from e
