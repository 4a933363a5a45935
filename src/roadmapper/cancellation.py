from __future__ import annotations

PAUSE_REASON = "paused"


class GenerationInterrupted(Exception):
    """Raised at a suspension point once a stop has been requested.

    Not an error: the job is parked and can be resumed from its last checkpoint.
    """


class CancellationToken:
    """Cooperative stop flag for a single job.

    Cancellation is polled, not preemptive. The token is only consulted between
    provider calls, so a request that is already in flight runs to completion and
    its result is discarded by the caller.
    """

    __slots__ = ("_cancelled", "reason")

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "interrupted") -> None:
        # A hard stop replaces a pause; a later pause never softens a hard stop.
        if not self._cancelled or self.reason == PAUSE_REASON:
            self.reason = reason
        self._cancelled = True

    @property
    def paused_only(self) -> bool:
        return self._cancelled and self.reason == PAUSE_REASON

    def clear(self) -> None:
        self._cancelled = False
        self.reason = None

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise GenerationInterrupted(self.reason or "interrupted")
