"""Error taxonomy for expense intake."""

from enum import StrEnum


class FailureKind(StrEnum):
    """Classification of a provider failure, used for fallback and user messages."""

    NOT_CONFIGURED = "not_configured"
    UNAVAILABLE = "unavailable"
    NETWORK = "network"
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    MALFORMED = "malformed"
    REJECTED = "rejected"
    REFUSED = "refused"
    INCOMPLETE = "incomplete"
    UNREADABLE = "unreadable"
    UNEXPECTED = "unexpected"


CONNECTIVITY_KINDS = frozenset(
    {FailureKind.NETWORK, FailureKind.TIMEOUT, FailureKind.UNAVAILABLE}
)


class IntakeError(Exception):
    """Base exception for expense intake."""


class IntakeValidationError(IntakeError):
    """The artifact was rejected before any extraction was attempted."""


class UnsupportedArtifactError(IntakeValidationError):
    """Raised for MIME types the pipeline cannot process."""


class ArtifactTooLargeError(IntakeValidationError):
    """Raised when the artifact exceeds the configured upload limit."""


class ProviderError(IntakeError):
    """Base exception for an upstream provider failure."""

    kind: FailureKind = FailureKind.UNEXPECTED

    def __init__(self, message: str, *, kind: FailureKind | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class ProcessingUnavailableError(IntakeError):
    """Every option in a fallback chain failed.

    ``str(error)`` is safe to show to a user; ``failures`` keeps the raw
    provider failures for logging.
    """

    def __init__(self, user_message: str, failures: list | None = None) -> None:
        super().__init__(user_message)
        self.user_message = user_message
        self.failures = list(failures or [])


class StorageError(IntakeError):
    """Raised when a receipt artifact could not be stored."""
