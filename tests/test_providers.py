import asyncio
from typing import Any

import pytest

from roadmapper.providers import OpenAICompatibleProvider, ProviderError
from roadmapper.providers.base import ErrorKind, classify_error


class StatusError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FakeCompletions:
    def __init__(self, response: Any = None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.captured: dict[str, Any] = {}

    def create(self, **kwargs: Any) -> Any:
        self.captured.update(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


class FakeClient:
    def __init__(self, completions: FakeCompletions) -> None:
        self.chat = type("Chat", (), {"completions": completions})()


@pytest.mark.parametrize(
    ("exc", "kind"),
    [
        (StatusError("slow down", 429), ErrorKind.RATE_LIMITED),
        (StatusError("no such model", 404), ErrorKind.MODEL_UNAVAILABLE),
        (StatusError("upstream", 503), ErrorKind.TRANSIENT),
        (StatusError("bad key", 401), ErrorKind.FATAL),
        (RuntimeError("RESOURCE_EXHAUSTED: quota"), ErrorKind.RATE_LIMITED),
        (RuntimeError("model gemini-x is not supported"), ErrorKind.MODEL_UNAVAILABLE),
        (RuntimeError("The server is overloaded"), ErrorKind.TRANSIENT),
        (TimeoutError(), ErrorKind.TRANSIENT),
        (ValueError("prompt blocked"), ErrorKind.FATAL),
    ],
)
def test_classify_error(exc: Exception, kind: ErrorKind) -> None:
    error = classify_error(exc, model="m")

    assert error.kind is kind
    assert error.model == "m"
    assert error.retriable is (kind is not ErrorKind.FATAL)


def test_status_code_wins_over_message_text() -> None:
    error = classify_error(StatusError("connection refused by policy", 400))

    assert error.kind is ErrorKind.FATAL
    assert error.status_code == 400


def test_classify_error_keeps_existing_provider_error() -> None:
    original = ProviderError("busy", kind=ErrorKind.TRANSIENT)

    assert classify_error(original, model="m") is original
    assert original.model == "m"


def test_openai_provider_sends_model_and_prompt() -> None:
    completions = FakeCompletions(
        response={"choices": [{"message": {"content": '  {"goal": "x"}  '}}]}
    )
    provider = OpenAICompatibleProvider(client=FakeClient(completions))

    text = asyncio.run(provider.complete("make a roadmap", model="gpt-4o-mini"))

    assert text == '{"goal": "x"}'
    assert completions.captured["model"] == "gpt-4o-mini"
    assert completions.captured["messages"][-1] == {"role": "user", "content": "make a roadmap"}


def test_openai_provider_classifies_sdk_errors() -> None:
    completions = FakeCompletions(error=StatusError("Rate limit reached", 429))
    provider = OpenAICompatibleProvider(client=FakeClient(completions))

    with pytest.raises(ProviderError) as excinfo:
        asyncio.run(provider.complete("prompt", model="gpt-4o"))

    assert excinfo.value.kind is ErrorKind.RATE_LIMITED
    assert excinfo.value.model == "gpt-4o"


def test_openai_provider_treats_empty_completion_as_transient() -> None:
    completions = FakeCompletions(response={"choices": [{"message": {"content": ""}}]})
    provider = OpenAICompatibleProvider(client=FakeClient(completions))

    with pytest.raises(ProviderError) as excinfo:
        asyncio.run(provider.complete("prompt", model="gpt-4o"))

    assert excinfo.value.kind is ErrorKind.TRANSIENT


def test_from_preset_reads_key_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("XAI_API_KEY", "secret")

    provider = OpenAICompatibleProvider.from_preset("grok", timeout_seconds=30)

    assert provider.name == "grok"
    assert provider.base_url == "https://api.x.ai/v1"
    assert provider.api_key == "secret"
    assert provider.timeout_seconds == 30


def test_from_preset_local_needs_no_key() -> None:
    provider = OpenAICompatibleProvider.from_preset("local", base_url="http://gpu-box:8000/v1")

    assert provider.base_url == "http://gpu-box:8000/v1"
    assert provider.api_key == "local"


def test_from_preset_rejects_unknown_provider() -> None:
    with pytest.raises(ValueError):
        OpenAICompatibleProvider.from_preset("gemini")
