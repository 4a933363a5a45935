from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

ProviderName = Literal["openai", "grok", "local", "custom"]
PROVIDER_NAMES: tuple[str, ...] = ("openai", "grok", "local", "custom")
LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    """Raised when the configuration file holds unusable values."""


@dataclass(slots=True)
class ProviderConfig:
    name: ProviderName = "openai"
    models: list[str] = field(default_factory=lambda: ["gpt-4o-mini", "gpt-4o", "gpt-4.1-mini"])
    base_url: str = ""
    api_key_env: str = "OPENAI_API_KEY"
    timeout_seconds: float = 120.0


@dataclass(slots=True)
class RetryConfig:
    backoff_seconds: float = 1.0


@dataclass(slots=True)
class GenerationConfig:
    min_phases: int = 15
    max_phases: int = 50
    adaptive_difficulty: bool = True


@dataclass(slots=True)
class QueueConfig:
    yield_seconds: float = 0.05


@dataclass(slots=True)
class StorageConfig:
    saves_dir: str = "saves"


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(slots=True)
class RoadmapperConfig:
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> RoadmapperConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> RoadmapperConfig:
        try:
            return cls(
                provider=ProviderConfig(**data.get("provider", {})),
                retry=RetryConfig(**data.get("retry", {})),
                generation=GenerationConfig(**data.get("generation", {})),
                queue=QueueConfig(**data.get("queue", {})),
                storage=StorageConfig(**data.get("storage", {})),
                logging=LoggingConfig(**data.get("logging", {})),
            )
        except TypeError as exc:
            raise ConfigError(f"Unknown configuration key: {exc}") from exc

    def to_dict(self) -> dict:
        return {
            "provider": {
                "name": self.provider.name,
                "models": list(self.provider.models),
                "base_url": self.provider.base_url,
                "api_key_env": self.provider.api_key_env,
                "timeout_seconds": self.provider.timeout_seconds,
            },
            "retry": {
                "backoff_seconds": self.retry.backoff_seconds,
            },
            "generation": {
                "min_phases": self.generation.min_phases,
                "max_phases": self.generation.max_phases,
                "adaptive_difficulty": self.generation.adaptive_difficulty,
            },
            "queue": {
                "yield_seconds": self.queue.yield_seconds,
            },
            "storage": {
                "saves_dir": self.storage.saves_dir,
            },
            "logging": {
                "level": self.logging.level,
            },
        }

    def validate(self) -> RoadmapperConfig:
        if self.provider.name not in PROVIDER_NAMES:
            raise ConfigError(f"Unsupported provider: {self.provider.name}")
        models = [str(model).strip() for model in self.provider.models if str(model).strip()]
        if not models:
            raise ConfigError("provider.models must list at least one model.")
        self.provider.models = models
        if self.generation.min_phases < 1:
            raise ConfigError("generation.min_phases must be at least 1.")
        if self.generation.min_phases > self.generation.max_phases:
            raise ConfigError("generation.min_phases cannot exceed generation.max_phases.")
        if self.retry.backoff_seconds < 0 or self.queue.yield_seconds < 0:
            raise ConfigError("Delays cannot be negative.")
        if self.logging.level.upper() not in LOG_LEVELS:
            raise ConfigError(f"Unsupported log level: {self.logging.level}")
        return self

    def saves_path(self, config_path: Path) -> Path:
        saves_dir = Path(self.storage.saves_dir)
        if not saves_dir.is_absolute():
            saves_dir = config_path.parent / saves_dir
        return saves_dir


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0").rstrip(".")
        return rendered if rendered else "0"
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: RoadmapperConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    section_order = ["provider", "retry", "generation", "queue", "storage", "logging"]
    for section in section_order:
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> RoadmapperConfig:
    if not path.exists():
        return RoadmapperConfig.default()
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc
    return RoadmapperConfig.from_dict(data).validate()


def save_config(path: Path, config: RoadmapperConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")
