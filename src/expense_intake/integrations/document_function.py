"""Client for the managed document-processing function (secondary PDF provider)."""

import base64
import logging
from collections.abc import Awaitable, Callable

import httpx
from pydantic import ValidationError

from expense_intake.errors import FailureKind, ProviderError
from expense_intake.models import DocumentFields, ReceiptUpload

logger = logging.getLogger(__name__)

FUNCTION_PATH = "/functions/v1/pdf-processing"

TokenProvider = Callable[[], Awaitable[str | None]]


class DocumentFunctionError(ProviderError):
    """Raised when the document function cannot process a file."""

    kind = FailureKind.UNAVAILABLE


class DocumentFunctionClient:
    """
    Invokes the hosted PDF processing function with a base64 JSON body.

    The request is authorized with the current session token when a
    ``token_provider`` yields one, and with the project API key otherwise.
    A single attempt is made per call.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        token_provider: TokenProvider | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.endpoint = base_url.rstrip("/") + FUNCTION_PATH
        self.api_key = api_key
        self.token_provider = token_provider
        self.timeout = timeout
        self._client = client or httpx.AsyncClient()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _headers(self) -> dict[str, str]:
        token = await self.token_provider() if self.token_provider else None
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {token or self.api_key}",
        }

    async def process_document(
        self, upload: ReceiptUpload, user_id: str | None = None
    ) -> DocumentFields:
        """
        Send a document to the function and return the fields it extracted.

        Raises:
            DocumentFunctionError: If the call fails or the body is unusable
        """
        body = {
            "fileData": base64.b64encode(upload.data).decode("ascii"),
            "fileName": upload.filename,
            "userId": user_id,
        }
        try:
            response = await self._client.post(
                self.endpoint,
                json=body,
                headers=await self._headers(),
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise DocumentFunctionError(
                f"Document function timed out: {e}", kind=FailureKind.TIMEOUT
            ) from e
        except httpx.HTTPError as e:
            raise DocumentFunctionError(
                f"Document function unreachable: {e}", kind=FailureKind.NETWORK
            ) from e

        if not response.is_success:
            raise DocumentFunctionError(
                f"Document function returned {response.status_code}",
                kind=FailureKind.HTTP_STATUS,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise DocumentFunctionError(
                "Document function returned invalid JSON", kind=FailureKind.MALFORMED
            ) from e

        if not isinstance(payload, dict) or not payload:
            raise DocumentFunctionError(
                "No data returned from document function", kind=FailureKind.MALFORMED
            )
        if payload.get("error"):
            reason = payload.get("message") or payload["error"]
            raise DocumentFunctionError(
                f"Document function failed: {reason}",
                kind=FailureKind.REJECTED,
            )

        try:
            return DocumentFields.model_validate(payload)
        except ValidationError as e:
            raise DocumentFunctionError(
                f"Invalid document function data: {e}", kind=FailureKind.MALFORMED
            ) from e
