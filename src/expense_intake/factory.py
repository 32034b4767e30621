"""Builds the intake services from one settings value."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date

from expense_intake.categorization import CategorizationService
from expense_intake.config import IntakeSettings
from expense_intake.conversation import ConversationController, ConversationSession
from expense_intake.integrations.anthropic_extractor import AnthropicExtractor
from expense_intake.integrations.document_function import (
    DocumentFunctionClient,
    TokenProvider,
)
from expense_intake.integrations.ocr import OCREngine
from expense_intake.integrations.storage import (
    LocalReceiptStorage,
    ReceiptStorage,
    SupabaseReceiptStorage,
)
from expense_intake.integrations.workflow import WorkflowClient
from expense_intake.ingestion import DocumentIngestionPipeline
from expense_intake.rules import RuleBasedExtractor

logger = logging.getLogger(__name__)


@dataclass
class IntakeServices:
    categorization: CategorizationService
    ingestion: DocumentIngestionPipeline
    conversation: ConversationController

    def new_session(self) -> ConversationSession:
        return ConversationSession(self.conversation)

    async def aclose(self) -> None:
        for client in (self.ingestion.workflow, self.ingestion.document_function):
            if client is not None:
                await client.aclose()


def _build_storage(settings: IntakeSettings) -> ReceiptStorage | None:
    if settings.local_storage_path is not None:
        return LocalReceiptStorage(settings.local_storage_path)
    if settings.supabase_url and settings.supabase_key:
        return SupabaseReceiptStorage(
            settings.supabase_url, settings.supabase_key, bucket=settings.storage_bucket
        )
    return None


def create_services(
    settings: IntakeSettings,
    token_provider: TokenProvider | None = None,
    today: Callable[[], date] = date.today,
) -> IntakeServices:
    """
    Wire every service from *settings*.

    Providers whose configuration is missing are left out; the services
    then run on their rule-based fallbacks.

    Args:
        settings: Explicit configuration
        token_provider: Async callable returning the current session token,
                        used to authorize document function calls
        today: Clock used to resolve relative dates
    """
    rules = RuleBasedExtractor()

    extractor = None
    if settings.anthropic_api_key:
        extractor = AnthropicExtractor(
            api_key=settings.anthropic_api_key,
            model=settings.anthropic_model,
            max_tokens=settings.anthropic_max_tokens,
            timeout=settings.completion_timeout,
            max_attempts=settings.completion_max_attempts,
        )
    else:
        logger.warning("ANTHROPIC_API_KEY not set; using rule-based extraction only")

    workflow = None
    if settings.workflow_url:
        workflow = WorkflowClient(
            settings.workflow_url,
            timeout=settings.workflow_timeout,
            health_timeout=settings.workflow_health_timeout,
            max_retries=settings.workflow_max_retries,
            retry_delay=settings.workflow_retry_delay,
        )

    document_function = None
    if settings.supabase_url and settings.supabase_key:
        document_function = DocumentFunctionClient(
            settings.supabase_url,
            settings.supabase_key,
            token_provider=token_provider,
            timeout=settings.document_function_timeout,
        )

    categorization = CategorizationService(extractor=extractor, rules=rules)
    ingestion = DocumentIngestionPipeline(
        categorization,
        ocr_engine=OCREngine() if settings.ocr_enabled else None,
        workflow=workflow,
        document_function=document_function,
        storage=_build_storage(settings),
        rules=rules,
        ocr_timeout=settings.ocr_timeout,
        pdf_primary_budget=settings.pdf_primary_budget_seconds,
        max_upload_bytes=settings.max_upload_bytes,
        today=today,
    )
    conversation = ConversationController(
        extractor=extractor,
        rules=rules,
        history_limit=settings.conversation_history_limit,
        today=today,
    )
    return IntakeServices(
        categorization=categorization, ingestion=ingestion, conversation=conversation
    )
