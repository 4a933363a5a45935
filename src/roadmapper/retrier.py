from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from roadmapper.cancellation import CancellationToken
from roadmapper.errors import ModelsExhaustedError
from roadmapper.parsing import parse_json_response
from roadmapper.providers.base import CompletionProvider, classify_error

logger = logging.getLogger(__name__)

EventHook = Callable[[dict[str, Any]], None]


@dataclass(slots=True)
class RetryPolicy:
    backoff_seconds: float = 1.0


class ModelFallbackRetrier:
    """Rotates through an ordered model list until one call succeeds.

    The cursor is shared by every call made through one retrier, so a model that
    failed stays skipped for later calls instead of being retried first again.
    Recoverable provider errors advance the cursor; a full cycle back to the
    model the call started on raises :class:`ModelsExhaustedError`. Fatal
    provider errors and unparsable responses propagate immediately.
    """

    def __init__(
        self,
        provider: CompletionProvider,
        models: Sequence[str],
        retry_policy: RetryPolicy | None = None,
        event_hook: EventHook | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not models:
            raise ValueError("At least one model identifier is required.")
        self.provider = provider
        self.models = list(models)
        self.retry_policy = retry_policy or RetryPolicy()
        self.event_hook = event_hook
        self.cursor = 0
        self._sleep = sleep

    @property
    def current_model(self) -> str:
        return self.models[self.cursor]

    def _emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            self.event_hook(event)

    async def generate(
        self,
        prompt: str,
        token: CancellationToken,
        *,
        call_name: str = "generate",
    ) -> dict[str, Any]:
        start = self.cursor
        attempts = 0
        errors: list[str] = []
        while True:
            token.raise_if_cancelled()
            model = self.models[self.cursor]
            self._emit({"event": "model_attempt", "model": model, "call": call_name})
            try:
                text = await self.provider.complete(prompt, model=model)
            except Exception as exc:
                error = classify_error(exc, model=model)
                if not error.retriable:
                    logger.error("Fatal provider error from %s during %s: %s", model, call_name, error)
                    self._emit(
                        {
                            "event": "model_attempt_failed",
                            "model": model,
                            "call": call_name,
                            "kind": error.kind.value,
                            "error": str(error),
                            "retriable": False,
                        }
                    )
                    if error is exc:
                        raise
                    raise error from exc

                attempts += 1
                errors.append(f"{model}: {error}")
                logger.warning(
                    "Model %s failed during %s (%s): %s", model, call_name, error.kind.value, error
                )
                self._emit(
                    {
                        "event": "model_attempt_failed",
                        "model": model,
                        "call": call_name,
                        "kind": error.kind.value,
                        "error": str(error),
                        "retriable": True,
                    }
                )
                self.cursor = (self.cursor + 1) % len(self.models)
                if self.cursor == start:
                    self._emit({"event": "models_exhausted", "call": call_name, "attempts": attempts})
                    summary = "; ".join(errors[-6:])
                    raise ModelsExhaustedError(
                        f"All {len(self.models)} models failed for {call_name}. {summary}",
                        attempts=attempts,
                        errors=errors,
                    )
                self._emit(
                    {
                        "event": "model_switched",
                        "from_model": model,
                        "to_model": self.models[self.cursor],
                        "call": call_name,
                        "delay_seconds": self.retry_policy.backoff_seconds,
                    }
                )
                if self.retry_policy.backoff_seconds > 0:
                    await self._sleep(self.retry_policy.backoff_seconds)
                continue

            return parse_json_response(text)
