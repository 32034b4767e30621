"""Document ingestion: turns an uploaded artifact into a structured expense record."""

import asyncio
import logging
from collections.abc import Callable
from datetime import date

from expense_intake.categories import CONFIDENCE_FLOOR, clamp_confidence
from expense_intake.categorization import CategorizationService
from expense_intake.errors import (
    CONNECTIVITY_KINDS,
    ArtifactTooLargeError,
    FailureKind,
    IntakeValidationError,
    ProcessingUnavailableError,
    StorageError,
    UnsupportedArtifactError,
)
from expense_intake.integrations.document_function import DocumentFunctionClient
from expense_intake.integrations.ocr import OCREngine
from expense_intake.integrations.storage import ReceiptStorage
from expense_intake.integrations.workflow import WorkflowClient
from expense_intake.models import (
    DocumentFields,
    ExpenseContext,
    ExtractionResult,
    ExtractionSource,
    ReceiptExtractionResult,
    ReceiptFields,
    ReceiptUpload,
)
from expense_intake.results import Failure, Outcome, Success, capture
from expense_intake.rules import RuleBasedExtractor
from expense_intake.utils.dates import normalize_date_value

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, str], None]

PDF_TYPE = "application/pdf"
SUPPORTED_TYPES: tuple[str, ...] = (
    "image/jpeg",
    "image/png",
    "image/webp",
    PDF_TYPE,
    "text/plain",
)
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
MIN_OCR_CHARS = 10
TEXT_CONFIDENCE_CAP = 0.95

PROCESSING_NOTES = {
    ExtractionSource.PRIMARY_PROVIDER: "Processed via workflow",
    ExtractionSource.SECONDARY_PROVIDER: "Processed via document function",
    ExtractionSource.SECONDARY_AFTER_PRIMARY_FAILURE: (
        "Processed via document function (workflow fallback)"
    ),
}

# Defaults for fields a PDF provider left out, per provider.
PRIMARY_DEFAULTS = {
    "merchant": "Unknown Merchant",
    "description": "PDF Receipt",
    "confidence": 0.8,
}
SECONDARY_DEFAULTS = {
    "merchant": "Unknown",
    "description": "Receipt processing",
    "confidence": CONFIDENCE_FLOOR,
}

UNAVAILABLE_MESSAGE = (
    "PDF processing services are currently unavailable. "
    "Please try again later or enter details manually."
)
UNREADABLE_MESSAGE = (
    "We could not read this PDF. "
    "Please check the file and try again, or enter details manually."
)
GENERIC_MESSAGE = (
    "Failed to process receipt. Please try again or enter details manually."
)


def classify_failures(failures: list[Failure]) -> str:
    """Pick a user-facing message for an exhausted fallback chain."""
    kinds = {failure.kind for failure in failures}
    if kinds and kinds <= CONNECTIVITY_KINDS | {FailureKind.NOT_CONFIGURED}:
        return UNAVAILABLE_MESSAGE
    if kinds & {FailureKind.MALFORMED, FailureKind.REJECTED, FailureKind.UNREADABLE}:
        return UNREADABLE_MESSAGE
    return GENERIC_MESSAGE


def _media_type(upload: ReceiptUpload) -> str:
    return upload.content_type.split(";")[0].strip().lower()


def _notify(
    on_progress: ProgressCallback | None, event_type: str, message: str
) -> None:
    if on_progress:
        on_progress(event_type, message)


class DocumentIngestionPipeline:
    """
    Routes an artifact to the right extraction path and always returns a
    schema-valid record, or raises ``ProcessingUnavailableError`` when a PDF
    could not be processed by any provider.

    Image path: OCR (worker thread, bounded) -> provider text analysis -> rules.
    PDF path: workflow health check -> workflow submit -> document function.
    Text path: provider sentence extraction -> rules.
    Every path finishes with categorization and, given a user id, storage.
    """

    def __init__(
        self,
        categorizer: CategorizationService,
        ocr_engine: OCREngine | None = None,
        workflow: WorkflowClient | None = None,
        document_function: DocumentFunctionClient | None = None,
        storage: ReceiptStorage | None = None,
        rules: RuleBasedExtractor | None = None,
        ocr_timeout: float = 30.0,
        pdf_primary_budget: float = 90.0,
        max_upload_bytes: int = MAX_UPLOAD_BYTES,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.categorizer = categorizer
        self.ocr_engine = ocr_engine
        self.workflow = workflow
        self.document_function = document_function
        self.storage = storage
        self.rules = rules or categorizer.rules
        self.ocr_timeout = ocr_timeout
        self.pdf_primary_budget = pdf_primary_budget
        self.max_upload_bytes = max_upload_bytes
        self.today = today

    def validate_upload(self, upload: ReceiptUpload) -> None:
        """
        Reject artifacts the pipeline cannot process.

        Raises:
            UnsupportedArtifactError: If the MIME type is not supported
            ArtifactTooLargeError: If the artifact exceeds the upload limit
            IntakeValidationError: If the artifact is empty
        """
        if _media_type(upload) not in SUPPORTED_TYPES:
            raise UnsupportedArtifactError(
                "Unsupported file type. "
                "Please upload JPG, PNG, WebP, PDF or text files."
            )
        if upload.size > self.max_upload_bytes:
            limit_mb = self.max_upload_bytes // (1024 * 1024)
            raise ArtifactTooLargeError(
                f"File too large. Please upload files smaller than {limit_mb}MB."
            )
        if upload.size == 0:
            raise IntakeValidationError("The uploaded file is empty.")

    async def process_receipt(
        self,
        upload: ReceiptUpload,
        user_id: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ReceiptExtractionResult:
        """
        Process an uploaded receipt artifact.

        Args:
            upload: The artifact bytes and declared MIME type
            user_id: When given, the artifact is stored after a successful extraction
            on_progress: Optional callback for progress updates (event_type, message)

        Returns:
            ReceiptExtractionResult with provenance in ``source``

        Raises:
            IntakeValidationError: If the artifact is rejected before processing
            ProcessingUnavailableError: If no PDF provider could process the document
        """
        self.validate_upload(upload)
        media_type = _media_type(upload)
        logger.info(
            "Processing %s (%s, %d bytes)", upload.filename, media_type, upload.size
        )

        if media_type == PDF_TYPE:
            result = await self._process_pdf(upload, user_id, on_progress)
        elif media_type.startswith("text/"):
            text = upload.data.decode("utf-8", errors="replace")
            if not text.strip():
                raise IntakeValidationError("The uploaded text file is empty.")
            result = await self._process_sentence(text, on_progress)
        else:
            result = await self._process_image(upload, on_progress)

        return await self._store(result, upload, user_id, on_progress)

    async def process_text(
        self,
        text: str,
        user_id: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ReceiptExtractionResult:
        """Extract an expense from a spoken or typed sentence."""
        if not text or not text.strip():
            raise IntakeValidationError("No expense text provided.")
        result = await self._process_sentence(text, on_progress)
        upload = ReceiptUpload(
            filename="expense.txt", content_type="text/plain", data=text.encode("utf-8")
        )
        return await self._store(result, upload, user_id, on_progress)

    # Image path

    async def _read_image(self, upload: ReceiptUpload) -> Outcome[str]:
        if self.ocr_engine is None:
            return Failure(
                "ocr", FailureKind.NOT_CONFIGURED, "OCR engine not configured", "ocr"
            )

        # OCR is synchronous, so we run it in an executor
        loop = asyncio.get_running_loop()
        outcome = await capture(
            "ocr",
            asyncio.wait_for(
                loop.run_in_executor(None, self.ocr_engine.extract_text, upload.data),
                timeout=self.ocr_timeout,
            ),
            stage="ocr",
        )
        if isinstance(outcome, Failure):
            return outcome

        cleaned = "\n".join(
            line.strip() for line in outcome.value.splitlines() if line.strip()
        )
        if len(cleaned) < MIN_OCR_CHARS:
            return Failure(
                "ocr",
                FailureKind.UNREADABLE,
                f"OCR extracted only {len(cleaned)} characters",
                "ocr",
            )
        return Success(cleaned, "ocr")

    async def _process_image(
        self, upload: ReceiptUpload, on_progress: ProgressCallback | None
    ) -> ReceiptExtractionResult:
        ocr = await self._read_image(upload)
        if isinstance(ocr, Success):
            text, source = ocr.value, ExtractionSource.OCR
            message = f"Extracted text from {upload.filename}: {len(text)} characters"
            _notify(on_progress, "ocr_success", message)
        else:
            text = self.rules.synthesize_receipt_text(upload.filename, self.today())
            source = ExtractionSource.OCR_FALLBACK
            message = f"Could not read text from {upload.filename}, using fallback"
            _notify(on_progress, "ocr_error", message)

        fields = await self._analyze_text(text)
        categorization = await self._categorize(fields)
        message = f"Extracted {fields.merchant} from {upload.filename}"
        _notify(on_progress, "extraction_success", message)
        return self._build_result(fields, text, source, categorization)

    async def _analyze_text(self, text: str) -> ReceiptFields:
        extractor = self.categorizer.extractor
        if extractor is not None:
            outcome = await capture(
                "completion", extractor.analyze_receipt_text(text), stage="analyze"
            )
            if isinstance(outcome, Success):
                return outcome.value
        return self.rules.analyze_receipt_text(text, self.today())

    # PDF path

    async def _submit_primary(
        self, upload: ReceiptUpload, user_id: str | None
    ) -> DocumentFields:
        async with asyncio.timeout(self.pdf_primary_budget):
            return await self.workflow.process_document(upload, user_id)

    async def _run_primary(
        self,
        upload: ReceiptUpload,
        user_id: str | None,
        on_progress: ProgressCallback | None,
    ) -> Outcome[DocumentFields]:
        if self.workflow is None:
            return Failure(
                "workflow",
                FailureKind.NOT_CONFIGURED,
                "workflow not configured",
                "health",
            )

        if not await self.workflow.is_available():
            return Failure(
                "workflow", FailureKind.UNAVAILABLE, "health check failed", "health"
            )

        _notify(on_progress, "pdf_primary", f"Sending {upload.filename} to workflow")
        return await capture(
            "workflow", self._submit_primary(upload, user_id), stage="submit"
        )

    async def _run_secondary(
        self, upload: ReceiptUpload, user_id: str | None
    ) -> Outcome[DocumentFields]:
        if self.document_function is None:
            return Failure(
                "document_function",
                FailureKind.NOT_CONFIGURED,
                "document function not configured",
            )
        return await capture(
            "document_function",
            self.document_function.process_document(upload, user_id),
        )

    async def _process_pdf(
        self,
        upload: ReceiptUpload,
        user_id: str | None,
        on_progress: ProgressCallback | None,
    ) -> ReceiptExtractionResult:
        failures: list[Failure] = []

        primary = await self._run_primary(upload, user_id, on_progress)
        if isinstance(primary, Success):
            document, defaults = primary.value, PRIMARY_DEFAULTS
            source = ExtractionSource.PRIMARY_PROVIDER
        else:
            failures.append(primary)
            # A failed health check means the submit was never attempted
            if primary.stage == "health":
                source = ExtractionSource.SECONDARY_PROVIDER
            else:
                source = ExtractionSource.SECONDARY_AFTER_PRIMARY_FAILURE
            _notify(
                on_progress,
                "pdf_fallback",
                f"Workflow failed for {upload.filename}, trying document function",
            )

            secondary = await self._run_secondary(upload, user_id)
            if isinstance(secondary, Failure):
                failures.append(secondary)
                logger.error(
                    "All PDF providers failed for %s: %s",
                    upload.filename,
                    "; ".join(failure.describe() for failure in failures),
                )
                message = classify_failures(failures)
                _notify(on_progress, "pdf_error", message)
                raise ProcessingUnavailableError(message, failures)
            document, defaults = secondary.value, SECONDARY_DEFAULTS

        note = PROCESSING_NOTES[source]
        fields = ReceiptFields(
            merchant=document.merchant or defaults["merchant"],
            amount=document.amount or 0.0,
            description=document.description or defaults["description"],
            date=document.date,
            notes=f"{document.notes} | {note}" if document.notes else note,
            confidence=document.confidence or defaults["confidence"],
        )
        text = document.extracted_text or f"PDF processed: {upload.filename}"
        categorization = await self._categorize(fields)
        _notify(on_progress, "pdf_success", f"Processed {upload.filename} ({source})")
        return self._build_result(fields, text, source, categorization)

    # Text path

    async def _process_sentence(
        self, text: str, on_progress: ProgressCallback | None
    ) -> ReceiptExtractionResult:
        today = self.today()
        fields = None
        extractor = self.categorizer.extractor
        if extractor is not None:
            outcome = await capture(
                "completion",
                extractor.extract_spoken_expense(text, today),
                stage="spoken",
            )
            if isinstance(outcome, Success):
                fields = outcome.value
        if fields is None:
            fields = self.rules.extract_spoken_expense(text, today)

        categorization = await self._categorize(fields)
        confidence = min(
            clamp_confidence(fields.confidence) * categorization.confidence,
            TEXT_CONFIDENCE_CAP,
        )
        message = f"Extracted {fields.merchant} from text"
        _notify(on_progress, "extraction_success", message)

        return self._build_result(
            fields, text, ExtractionSource.TEXT, categorization, confidence=confidence
        )

    # Shared

    async def _categorize(self, fields: ReceiptFields) -> ExtractionResult:
        expense = ExpenseContext(
            merchant=fields.merchant,
            amount=max(fields.amount, 0.0),
            date=fields.date,
            description=fields.description,
            notes=fields.notes,
        )
        return await self.categorizer.categorize_expense(expense)

    def _build_result(
        self,
        fields: ReceiptFields,
        text: str,
        source: ExtractionSource,
        categorization: ExtractionResult,
        confidence: float | None = None,
    ) -> ReceiptExtractionResult:
        return ReceiptExtractionResult(
            merchant=fields.merchant.strip() or "Unknown Merchant",
            amount=max(fields.amount, 0.0),
            description=fields.description.strip() or "Receipt expense",
            date=normalize_date_value(fields.date, self.today()),
            notes=fields.notes or None,
            confidence=clamp_confidence(
                fields.confidence if confidence is None else confidence
            ),
            extracted_text=text.strip() or "No text extracted",
            category=categorization.category,
            suggested_payment_method=categorization.suggested_payment_method,
            source=source,
        )

    async def _store(
        self,
        result: ReceiptExtractionResult,
        upload: ReceiptUpload,
        user_id: str | None,
        on_progress: ProgressCallback | None,
    ) -> ReceiptExtractionResult:
        if not user_id or self.storage is None:
            return result
        try:
            stored = await self.storage.store(
                user_id=user_id,
                filename=upload.filename,
                content=upload.data,
                content_type=upload.content_type,
            )
        except StorageError as e:
            logger.warning(
                "Storing %s failed, continuing without URL: %s", upload.filename, e
            )
            _notify(on_progress, "storage_error", f"Could not store {upload.filename}")
            return result
        _notify(on_progress, "storage_success", f"Stored {upload.filename}")
        return result.model_copy(update={"receipt_url": stored.url})
