from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

from roadmapper.providers.base import CompletionProvider, ErrorKind, ProviderError, classify_error

logger = logging.getLogger(__name__)

PROVIDER_PRESETS: dict[str, dict[str, Any]] = {
    "openai": {
        "base_url": None,
        "api_key_env": "OPENAI_API_KEY",
        "models": ["gpt-4o-mini", "gpt-4o", "gpt-4.1-mini"],
    },
    "grok": {
        "base_url": "https://api.x.ai/v1",
        "api_key_env": "XAI_API_KEY",
        "models": ["grok-3-mini", "grok-3"],
    },
    "local": {
        "base_url": "http://localhost:11434/v1",
        "api_key_env": "",
        "models": ["llama3.1", "mistral"],
    },
    "custom": {
        "base_url": None,
        "api_key_env": "CUSTOM_API_KEY",
        "models": ["default"],
    },
}

SYSTEM_PROMPT = (
    "You are an expert curriculum designer. Answer with a single JSON object and nothing else."
)


class OpenAICompatibleProvider(CompletionProvider):
    """Chat-completions adapter for OpenAI and OpenAI-compatible endpoints."""

    def __init__(
        self,
        *,
        name: str = "openai",
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float = 120.0,
        client: Any | None = None,
    ) -> None:
        self.name = name
        self.base_url = base_url
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self._client = client

    @classmethod
    def from_preset(
        cls,
        name: str,
        *,
        base_url: str = "",
        api_key_env: str = "",
        timeout_seconds: float = 120.0,
    ) -> OpenAICompatibleProvider:
        if name not in PROVIDER_PRESETS:
            raise ValueError(f"Unknown provider preset: {name}")
        preset = PROVIDER_PRESETS[name]
        env_name = api_key_env or preset["api_key_env"]
        api_key = os.environ.get(env_name) if env_name else None
        if name == "local" and not api_key:
            # Local servers ignore the key but the SDK insists on one.
            api_key = "local"
        return cls(
            name=name,
            base_url=base_url or preset["base_url"],
            api_key=api_key,
            timeout_seconds=timeout_seconds,
        )

    def _get_client(self) -> Any:
        if self._client is None:
            from openai import OpenAI

            try:
                self._client = OpenAI(
                    api_key=self.api_key,
                    base_url=self.base_url,
                    timeout=self.timeout_seconds,
                    max_retries=0,
                )
            except Exception as exc:
                raise ProviderError(
                    f"Could not initialise {self.name} client: {exc}",
                    kind=ErrorKind.FATAL,
                ) from exc
        return self._client

    @staticmethod
    def _extract_text(payload: Any) -> str:
        choices = getattr(payload, "choices", None)
        if choices is None and isinstance(payload, dict):
            choices = payload.get("choices")
        if not choices:
            return ""
        first = choices[0]
        message = getattr(first, "message", None)
        if message is None and isinstance(first, dict):
            message = first.get("message")
        content = getattr(message, "content", None)
        if content is None and isinstance(message, dict):
            content = message.get("content")
        return content if isinstance(content, str) else ""

    async def complete(self, prompt: str, *, model: str) -> str:
        client = self._get_client()

        def _request() -> Any:
            return client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
            )

        logger.debug("Requesting completion from %s model=%s", self.name, model)
        try:
            payload = await asyncio.to_thread(_request)
        except Exception as exc:
            raise classify_error(exc, model=model) from exc

        text = self._extract_text(payload).strip()
        if not text:
            raise ProviderError(
                f"{self.name} returned an empty completion",
                kind=ErrorKind.TRANSIENT,
                model=model,
            )
        return text
