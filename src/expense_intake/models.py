"""Data models for expense extraction and conversational entry."""

import mimetypes
from enum import StrEnum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from expense_intake.categories import (
    CONFIDENCE_CEILING,
    CONFIDENCE_FLOOR,
    DEFAULT_CATEGORIES,
    category_slug,
    is_known_category,
)


class _WireModel(BaseModel):
    """Base for models exchanged with UI layers and providers (camelCase keys)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExpenseContext(_WireModel):
    """Input to every categorizer. Immutable per call."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    merchant: str
    amount: float = Field(ge=0)
    currency: str = "USD"
    date: str | None = None
    description: str | None = None
    notes: str | None = None


class ExtractionResult(_WireModel):
    """Categorization of a single expense."""

    category: str
    confidence: float = Field(ge=CONFIDENCE_FLOOR, le=CONFIDENCE_CEILING)
    reasoning: str
    suggested_payment_method: str | None = None

    @field_validator("category")
    @classmethod
    def _category_in_registry(cls, value: str) -> str:
        if not is_known_category(value):
            raise ValueError(f"Unknown category: {value!r}")
        return value


class ExtractionSource(StrEnum):
    """Which path produced a receipt result."""

    OCR = "ocr"
    OCR_FALLBACK = "ocr_fallback"
    PRIMARY_PROVIDER = "primary_provider"
    SECONDARY_PROVIDER = "secondary_provider"
    SECONDARY_AFTER_PRIMARY_FAILURE = "secondary_after_primary_failure"
    TEXT = "text"


class ReceiptFields(BaseModel):
    """Fields read from receipt text or a spoken sentence, before categorization."""

    merchant: str
    amount: float
    description: str
    date: str | None = None
    notes: str | None = None
    confidence: float


class DocumentFields(_WireModel):
    """Loosely typed fields returned by a remote document provider."""

    merchant: str | None = None
    amount: float | None = None
    description: str | None = None
    date: str | None = None
    notes: str | None = None
    confidence: float | None = None
    extracted_text: str | None = None


class ReceiptExtractionResult(_WireModel):
    """Structured record produced from an uploaded artifact or a sentence."""

    merchant: str
    amount: float = Field(ge=0)
    description: str
    date: str | None = None
    notes: str | None = None
    confidence: float = Field(ge=CONFIDENCE_FLOOR, le=CONFIDENCE_CEILING)
    extracted_text: str = Field(min_length=1)
    receipt_url: str | None = None
    category: str | None = None
    suggested_payment_method: str | None = None
    source: ExtractionSource


class ReceiptUpload(BaseModel):
    """An uploaded artifact: raw bytes plus its declared MIME type."""

    model_config = ConfigDict(frozen=True)

    filename: str
    content_type: str
    data: bytes = Field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(
        cls, path: str | Path, content_type: str | None = None
    ) -> "ReceiptUpload":
        path = Path(path)
        if not path.exists() or not path.is_file():
            raise FileNotFoundError(f"Receipt file not found: {path}")
        guessed, _ = mimetypes.guess_type(path.name)
        return cls(
            filename=path.name,
            content_type=content_type or guessed or "application/octet-stream",
            data=path.read_bytes(),
        )


class ConversationStep(StrEnum):
    INITIAL = "initial"
    COLLECTING = "collecting"
    CONFIRMING = "confirming"
    EDITING = "editing"
    COMPLETE = "complete"


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class Category(BaseModel):
    id: str
    name: str


def default_category_snapshot() -> list[Category]:
    return [Category(id=category_slug(name), name=name) for name in DEFAULT_CATEGORIES]


class ExpenseDraft(_WireModel):
    """Partially filled expense built up over conversation turns."""

    amount: str | None = None
    merchant: str | None = None
    description: str | None = None
    date: str | None = None
    category: str | None = None
    notes: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            text = str(value)
            return text[:-2] if text.endswith(".0") else text
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    def merged_with(self, other: "ExpenseDraft") -> "ExpenseDraft":
        """Overlay the non-empty fields of *other*; set values are never cleared."""
        updates = other.model_dump(exclude_none=True)
        return self.model_copy(update=updates)

    def filled_fields(self) -> list[str]:
        return [name for name, value in self.model_dump().items() if value is not None]

    def missing_required_fields(self) -> list[str]:
        return [name for name in ("amount", "merchant") if getattr(self, name) is None]

    @property
    def has_required_fields(self) -> bool:
        return not self.missing_required_fields()


class ConversationContext(_WireModel):
    """State of one chat session. Owned and mutated by a single session."""

    messages: list[ChatMessage] = Field(default_factory=list)
    current_expense: ExpenseDraft = Field(default_factory=ExpenseDraft)
    conversation_step: ConversationStep = ConversationStep.INITIAL
    available_categories: list[Category] = Field(
        default_factory=default_category_snapshot
    )

    @property
    def category_names(self) -> list[str]:
        return [category.name for category in self.available_categories]


class ConversationResponse(_WireModel):
    message: str
    extracted_data: ExpenseDraft
    next_step: ConversationStep
    is_complete: bool
    needs_user_input: bool
    suggested_actions: list[str] | None = None
