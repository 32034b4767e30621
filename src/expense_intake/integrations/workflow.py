"""Client for the document-processing workflow webhook (primary PDF provider)."""

import logging
from typing import Any

import httpx
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from expense_intake.errors import FailureKind, ProviderError
from expense_intake.models import DocumentFields, ReceiptUpload

logger = logging.getLogger(__name__)

UPLOAD_FIELD = "Receipt"


class WorkflowError(ProviderError):
    """Base exception for workflow webhook errors."""

    kind = FailureKind.UNAVAILABLE


class WorkflowTimeoutError(WorkflowError):
    kind = FailureKind.TIMEOUT


class WorkflowConnectionError(WorkflowError):
    kind = FailureKind.NETWORK


class WorkflowHTTPError(WorkflowError):
    """Raised when the webhook answers with a non-2xx status."""

    kind = FailureKind.HTTP_STATUS

    def __init__(self, status_code: int, reason: str = "") -> None:
        message = f"Workflow webhook returned {status_code}"
        super().__init__(f"{message}: {reason}" if reason else message)
        self.status_code = status_code


class WorkflowResponseError(WorkflowError):
    """Raised when the webhook body is not JSON or has an unknown shape."""

    kind = FailureKind.MALFORMED


class WorkflowRejectedError(WorkflowError):
    """Raised when the workflow reports ``success: false``."""

    kind = FailureKind.REJECTED


def normalize_workflow_response(payload: Any) -> DocumentFields:
    """
    Normalize the two response shapes the workflow produces.

    The workflow answers either with an envelope ``{"success", "data", "error"}``
    or with the bare data object (recognized by a ``merchant``, ``amount`` or
    ``description`` key).

    Raises:
        WorkflowRejectedError: If the envelope reports failure or carries no data
        WorkflowResponseError: If the payload matches neither shape
    """
    if not isinstance(payload, dict):
        raise WorkflowResponseError(f"Unexpected response format: {payload!r}")

    if "success" in payload:
        if not payload["success"]:
            reason = (
                payload.get("error") or payload.get("message") or "processing failed"
            )
            raise WorkflowRejectedError(f"Workflow rejected document: {reason}")
        data = payload.get("data")
        if not data:
            raise WorkflowRejectedError("Workflow returned no data")
    elif any(payload.get(key) for key in ("merchant", "amount", "description")):
        data = payload
    else:
        raise WorkflowResponseError(f"Unexpected response format: {payload!r}")

    try:
        return DocumentFields.model_validate(data)
    except ValidationError as e:
        raise WorkflowResponseError(f"Invalid workflow data: {e}") from e


class WorkflowClient:
    """
    Async client for the PDF workflow webhook.

    ``is_available`` is a cheap GET health check. ``process_document`` submits the
    file as multipart form data and retries every failure a bounded number of
    times with a fixed delay.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        health_timeout: float = 5.0,
        max_retries: int = 2,
        retry_delay: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.health_timeout = health_timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._client = client or httpx.AsyncClient()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def is_available(self) -> bool:
        """Return True when the webhook answers a GET with a non-5xx status."""
        try:
            response = await self._client.get(self.url, timeout=self.health_timeout)
        except httpx.HTTPError as e:
            logger.warning("Workflow service not available: %s", e)
            return False
        if response.status_code >= 500:
            logger.warning("Workflow service unhealthy: HTTP %s", response.status_code)
            return False
        return True

    async def process_document(
        self, upload: ReceiptUpload, user_id: str | None = None
    ) -> DocumentFields:
        """
        Submit a document to the workflow and return its normalized fields.

        Raises:
            WorkflowRejectedError: At once, when the workflow reports failure
            WorkflowError: After ``max_retries + 1`` failed attempts
        """
        logger.info(
            "Sending %s (%d bytes) to workflow", upload.filename, upload.size
        )
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(WorkflowError)
            & retry_if_not_exception_type(WorkflowRejectedError),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_fixed(self.retry_delay),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return await retrying(self._submit, upload, user_id)

    async def _submit(
        self, upload: ReceiptUpload, user_id: str | None
    ) -> DocumentFields:
        files = {UPLOAD_FIELD: (upload.filename, upload.data, upload.content_type)}
        data = {"userId": user_id} if user_id else None
        try:
            response = await self._client.post(
                self.url, files=files, data=data, timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            raise WorkflowTimeoutError(f"Workflow request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise WorkflowConnectionError(f"Workflow request failed: {e}") from e

        if not response.is_success:
            raise WorkflowHTTPError(response.status_code, response.reason_phrase)

        try:
            payload = response.json()
        except ValueError as e:
            raise WorkflowResponseError(
                f"Invalid JSON response from workflow: {response.text[:200]}"
            ) from e

        return normalize_workflow_response(payload)
