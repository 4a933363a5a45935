from roadmapper.providers.base import (
    CompletionProvider,
    ErrorKind,
    ProviderError,
    classify_error,
)
from roadmapper.providers.openai_compat import PROVIDER_PRESETS, OpenAICompatibleProvider

__all__ = [
    "PROVIDER_PRESETS",
    "CompletionProvider",
    "ErrorKind",
    "OpenAICompatibleProvider",
    "ProviderError",
    "classify_error",
]
