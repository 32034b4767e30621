"""Expense intake integrations module."""

from expense_intake.integrations.anthropic_extractor import (
    AnthropicExtractor,
    ExtractionError,
    ExtractionIncompleteError,
    ExtractionRefusedError,
    ExtractionUnavailableError,
)
from expense_intake.integrations.document_function import (
    DocumentFunctionClient,
    DocumentFunctionError,
)
from expense_intake.integrations.ocr import OCREngine, OCRError
from expense_intake.integrations.storage import (
    LocalReceiptStorage,
    ReceiptStorage,
    StoredReceipt,
    SupabaseReceiptStorage,
)
from expense_intake.integrations.workflow import (
    WorkflowClient,
    WorkflowError,
    normalize_workflow_response,
)

__all__ = [
    "AnthropicExtractor",
    "ExtractionError",
    "ExtractionRefusedError",
    "ExtractionIncompleteError",
    "ExtractionUnavailableError",
    "DocumentFunctionClient",
    "DocumentFunctionError",
    "OCREngine",
    "OCRError",
    "ReceiptStorage",
    "LocalReceiptStorage",
    "SupabaseReceiptStorage",
    "StoredReceipt",
    "WorkflowClient",
    "WorkflowError",
    "normalize_workflow_response",
]
