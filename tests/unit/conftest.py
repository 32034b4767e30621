"""Shared fixtures for unit tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from expense_intake.integrations.anthropic_extractor import AnthropicExtractor
from expense_intake.models import ReceiptUpload
from expense_intake.rules import RuleBasedExtractor
from tests.utils import FIXED_TODAY


@pytest.fixture
def today():
    """A fixed clock value so relative dates are deterministic."""
    return FIXED_TODAY


@pytest.fixture
def rules():
    return RuleBasedExtractor()


@pytest.fixture
def api_key():
    """Provide a test API key."""
    return "sk-test-key-12345"


@pytest.fixture
def fake_extractor():
    """An AnthropicExtractor stand-in whose provider methods are AsyncMocks."""
    extractor = MagicMock(spec=AnthropicExtractor)
    extractor.model = "claude-haiku-4-5"
    for name in (
        "categorize_expense",
        "suggest_categories",
        "analyze_receipt_text",
        "extract_spoken_expense",
        "converse",
    ):
        setattr(extractor, name, AsyncMock())
    return extractor


@pytest.fixture
def pdf_upload():
    return ReceiptUpload(
        filename="invoice.pdf", content_type="application/pdf", data=b"%PDF-1.4 fake"
    )


@pytest.fixture
def image_upload():
    return ReceiptUpload(
        filename="starbucks_receipt.jpg",
        content_type="image/jpeg",
        data=b"\xff\xd8fake",
    )
