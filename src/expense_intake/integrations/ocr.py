"""OCR Engine using Google Cloud Vision API for receipt text extraction."""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from google.api_core import exceptions as google_exceptions
from google.cloud import vision

from expense_intake.errors import FailureKind, ProviderError

logger = logging.getLogger(__name__)


class OCRError(ProviderError):
    """Raised when text detection fails or returns an error payload."""

    kind = FailureKind.UNAVAILABLE


class OCREngine:
    """
    OCR Engine for extracting text from receipt images using Google Vision API.

    A Vision client is created for each call and its transport closed afterwards,
    whether detection succeeded or not. Calls are blocking; the ingestion
    pipeline runs them in the default executor.
    """

    def __init__(
        self, client_factory: Callable[[], vision.ImageAnnotatorClient] | None = None
    ) -> None:
        """
        Initialize the OCR Engine.

        Args:
            client_factory: Optional callable returning an ImageAnnotatorClient.
                            Defaults to ``vision.ImageAnnotatorClient``.
        """
        self._client_factory = client_factory or vision.ImageAnnotatorClient

    @contextmanager
    def acquire(self) -> Iterator[vision.ImageAnnotatorClient]:
        """Yield a fresh Vision client and release its transport on exit."""
        client = self._client_factory()
        try:
            yield client
        finally:
            try:
                client.transport.close()
            except Exception:
                logger.warning("Failed to close Vision client transport", exc_info=True)

    def extract_text(self, content: bytes) -> str:
        """
        Extract text from image bytes using Google Vision API.

        Args:
            content: Raw image bytes.

        Returns:
            Extracted text as a string. Returns empty string if no text is found.

        Raises:
            OCRError: If the API call fails or reports an error.
        """
        # vision.Image content expects bytes,
        # but type hints sometimes incorrectly expect a dict
        image = vision.Image(content=content)  # type: ignore

        with self.acquire() as client:
            try:
                # text_detection is a dynamic method added at runtime,
                # which static analysis may not resolve
                response = client.text_detection(image=image)  # type: ignore
            except google_exceptions.DeadlineExceeded as e:
                raise OCRError(
                    f"Text detection timed out: {e}", kind=FailureKind.TIMEOUT
                ) from e

            except google_exceptions.GoogleAPICallError as e:
                raise OCRError(f"Text detection failed: {e}") from e

        if response.error.message:
            raise OCRError(f"Text detection error: {response.error.message}")

        if response.text_annotations:
            # The first annotation contains the entire detected text
            return response.text_annotations[0].description

        return ""
