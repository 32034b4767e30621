"""Explicit outcomes for provider calls.

Fallback chains branch on ``Success`` / ``Failure`` values instead of relying
on exception handlers, so a provider error can never escape an extractor.
"""

import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from expense_intake.errors import FailureKind, ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T
    provider: str


@dataclass(frozen=True)
class Failure:
    provider: str
    kind: FailureKind
    detail: str
    stage: str = "call"

    def describe(self) -> str:
        return f"{self.provider}/{self.stage}: {self.kind} ({self.detail})"


Outcome = Union[Success[T], Failure]


async def capture(
    provider: str, awaitable: Awaitable[T], *, stage: str = "call"
) -> Outcome[T]:
    """Await *awaitable* and fold any provider failure into a ``Failure``."""
    try:
        value = await awaitable
    except ProviderError as e:
        logger.warning("%s %s failed: %s", provider, stage, e)
        return Failure(provider=provider, kind=e.kind, detail=str(e), stage=stage)
    except TimeoutError as e:
        logger.warning("%s %s timed out", provider, stage)
        return Failure(
            provider=provider,
            kind=FailureKind.TIMEOUT,
            detail=str(e) or "timed out",
            stage=stage,
        )
    except Exception as e:
        logger.exception("Unexpected error from %s %s", provider, stage)
        return Failure(
            provider=provider, kind=FailureKind.UNEXPECTED, detail=str(e), stage=stage
        )
    return Success(value=value, provider=provider)
