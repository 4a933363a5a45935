import asyncio
from typing import Any

import pytest

from roadmapper.cancellation import CancellationToken, GenerationInterrupted
from roadmapper.errors import ModelsExhaustedError, ResponseParseError
from roadmapper.providers.base import CompletionProvider, ErrorKind, ProviderError
from roadmapper.retrier import ModelFallbackRetrier, RetryPolicy

MODELS = ["model-a", "model-b", "model-c"]


class QueuedResponsesProvider(CompletionProvider):
    """Pops one scripted outcome per call; exceptions are raised, strings returned."""

    def __init__(self, outcomes: list[Any]) -> None:
        self.outcomes = list(outcomes)
        self.models: list[str] = []

    async def complete(self, prompt: str, *, model: str) -> str:
        _ = prompt
        self.models.append(model)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class StatusError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


def _rate_limited() -> ProviderError:
    return ProviderError("quota exceeded", kind=ErrorKind.RATE_LIMITED)


def _retrier(provider: CompletionProvider, **kwargs: Any) -> ModelFallbackRetrier:
    kwargs.setdefault("retry_policy", RetryPolicy(backoff_seconds=0))
    return ModelFallbackRetrier(provider, MODELS, **kwargs)


def test_third_model_succeeds_after_two_recoverable_failures() -> None:
    provider = QueuedResponsesProvider(
        [_rate_limited(), StatusError("model gone", 404), '{"goal": "ok"}']
    )
    retrier = _retrier(provider)

    result = asyncio.run(retrier.generate("prompt", CancellationToken()))

    assert result == {"goal": "ok"}
    assert provider.models == MODELS
    assert retrier.current_model == "model-c"


def test_all_models_failing_raises_exhausted_after_one_cycle() -> None:
    provider = QueuedResponsesProvider([_rate_limited(), _rate_limited(), _rate_limited()])
    retrier = _retrier(provider)

    with pytest.raises(ModelsExhaustedError) as excinfo:
        asyncio.run(retrier.generate("prompt", CancellationToken()))

    assert provider.models == MODELS
    assert excinfo.value.attempts == 3
    assert len(excinfo.value.errors) == 3
    assert "All 3 models failed" in str(excinfo.value)


def test_fatal_error_is_not_rotated() -> None:
    provider = QueuedResponsesProvider([StatusError("invalid api key", 401), '{"goal": "x"}'])
    retrier = _retrier(provider)

    with pytest.raises(ProviderError) as excinfo:
        asyncio.run(retrier.generate("prompt", CancellationToken()))

    assert excinfo.value.kind is ErrorKind.FATAL
    assert excinfo.value.status_code == 401
    assert provider.models == ["model-a"]


def test_unparsable_response_is_fatal_for_the_call() -> None:
    provider = QueuedResponsesProvider(["I cannot help with that.", '{"goal": "x"}'])
    retrier = _retrier(provider)

    with pytest.raises(ResponseParseError):
        asyncio.run(retrier.generate("prompt", CancellationToken()))

    assert provider.models == ["model-a"]


def test_cursor_persists_across_calls() -> None:
    provider = QueuedResponsesProvider([_rate_limited(), '{"n": 1}', '{"n": 2}'])
    retrier = _retrier(provider)
    token = CancellationToken()

    async def _run() -> list[dict[str, Any]]:
        first = await retrier.generate("one", token)
        second = await retrier.generate("two", token)
        return [first, second]

    assert asyncio.run(_run()) == [{"n": 1}, {"n": 2}]
    assert provider.models == ["model-a", "model-b", "model-b"]


def test_exhaustion_is_measured_from_the_call_start_model() -> None:
    provider = QueuedResponsesProvider(
        [_rate_limited(), '{"n": 1}', _rate_limited(), _rate_limited(), _rate_limited()]
    )
    retrier = _retrier(provider)
    token = CancellationToken()

    async def _run() -> None:
        await retrier.generate("one", token)
        await retrier.generate("two", token)

    with pytest.raises(ModelsExhaustedError):
        asyncio.run(_run())

    assert provider.models == ["model-a", "model-b", "model-b", "model-c", "model-a"]


def test_backoff_sleep_between_model_switches() -> None:
    delays: list[float] = []

    async def _fake_sleep(seconds: float) -> None:
        delays.append(seconds)

    provider = QueuedResponsesProvider([_rate_limited(), _rate_limited(), '{"ok": true}'])
    retrier = ModelFallbackRetrier(
        provider, MODELS, retry_policy=RetryPolicy(backoff_seconds=1.5), sleep=_fake_sleep
    )

    assert asyncio.run(retrier.generate("prompt", CancellationToken())) == {"ok": True}
    assert delays == [1.5, 1.5]


def test_cancelled_token_prevents_any_call() -> None:
    provider = QueuedResponsesProvider(['{"goal": "x"}'])
    token = CancellationToken()
    token.cancel("paused")

    with pytest.raises(GenerationInterrupted, match="paused"):
        asyncio.run(_retrier(provider).generate("prompt", token))

    assert provider.models == []


def test_cancel_during_rotation_stops_before_next_model() -> None:
    token = CancellationToken()

    class CancellingProvider(QueuedResponsesProvider):
        async def complete(self, prompt: str, *, model: str) -> str:
            token.cancel("removed")
            return await super().complete(prompt, model=model)

    provider = CancellingProvider([_rate_limited(), '{"goal": "x"}'])

    with pytest.raises(GenerationInterrupted):
        asyncio.run(_retrier(provider).generate("prompt", token))

    assert provider.models == ["model-a"]


def test_events_describe_each_attempt() -> None:
    events: list[dict[str, Any]] = []
    provider = QueuedResponsesProvider([RuntimeError("Too Many Requests"), '{"ok": 1}'])
    retrier = _retrier(provider, event_hook=events.append)

    asyncio.run(retrier.generate("prompt", CancellationToken(), call_name="structure"))

    assert [event["event"] for event in events] == [
        "model_attempt",
        "model_attempt_failed",
        "model_switched",
        "model_attempt",
    ]
    assert events[1]["kind"] == "rate_limited"
    assert events[2]["to_model"] == "model-b"
    assert all(event["call"] == "structure" for event in events)


def test_retrier_requires_models() -> None:
    with pytest.raises(ValueError):
        ModelFallbackRetrier(QueuedResponsesProvider([]), [])
