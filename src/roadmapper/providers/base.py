from __future__ import annotations

import re
from abc import ABC, abstractmethod
from enum import Enum

RATE_LIMIT_PATTERN = re.compile(r"\b429\b|rate.?limit|quota|resource.?exhausted|too many requests", re.I)
UNAVAILABLE_PATTERN = re.compile(
    r"\b404\b|not found|not supported|unsupported model|does not exist|unknown model", re.I
)
TRANSIENT_PATTERN = re.compile(
    r"\b5\d\d\b|timed? ?out|timeout|connection|overloaded|unavailable|network", re.I
)


class ErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    MODEL_UNAVAILABLE = "model_unavailable"
    TRANSIENT = "transient"
    FATAL = "fatal"


RECOVERABLE_KINDS = frozenset(
    {ErrorKind.RATE_LIMITED, ErrorKind.MODEL_UNAVAILABLE, ErrorKind.TRANSIENT}
)


class ProviderError(RuntimeError):
    """Raised when a completion call fails."""

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.FATAL,
        model: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.model = model
        self.status_code = status_code

    @property
    def retriable(self) -> bool:
        return self.kind in RECOVERABLE_KINDS


def classify_status(status_code: int | None) -> ErrorKind | None:
    if status_code is None:
        return None
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code == 404:
        return ErrorKind.MODEL_UNAVAILABLE
    if status_code >= 500:
        return ErrorKind.TRANSIENT
    return None


def classify_error(exc: BaseException, *, model: str | None = None) -> ProviderError:
    """Map an arbitrary provider exception onto a :class:`ProviderError`."""
    if isinstance(exc, ProviderError):
        if exc.model is None:
            exc.model = model
        return exc

    status_code = getattr(exc, "status_code", None)
    if not isinstance(status_code, int):
        status_code = None
    message = str(exc) or exc.__class__.__name__

    kind = classify_status(status_code)
    if kind is None:
        if RATE_LIMIT_PATTERN.search(message):
            kind = ErrorKind.RATE_LIMITED
        elif UNAVAILABLE_PATTERN.search(message):
            kind = ErrorKind.MODEL_UNAVAILABLE
        elif status_code is None and TRANSIENT_PATTERN.search(message):
            kind = ErrorKind.TRANSIENT
        elif isinstance(exc, (TimeoutError, ConnectionError)):
            kind = ErrorKind.TRANSIENT
        else:
            kind = ErrorKind.FATAL
    return ProviderError(message, kind=kind, model=model, status_code=status_code)


class CompletionProvider(ABC):
    name: str = "provider"

    @abstractmethod
    async def complete(self, prompt: str, *, model: str) -> str:
        """Return the raw completion text for ``prompt`` using ``model``."""
