from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Protocol, Tuple

from backends.errors import InvalidConfigurationError
from backends.registry import ProviderKind

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 2048


@dataclass(frozen=True)
class GenerationRequest:
    """A single text generation call, independent of the provider serving it."""

    prompt: str
    system_prompt: Optional[str] = None
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS

    def __post_init__(self) -> None:
        if not isinstance(self.prompt, str):
            raise InvalidConfigurationError("prompt must be a string")
        try:
            temperature = float(self.temperature)
            max_tokens = int(self.max_tokens)
        except (TypeError, ValueError) as e:
            raise InvalidConfigurationError(f"invalid generation parameters: {e}") from e
        if not (0.0 <= temperature <= 1.0):
            raise InvalidConfigurationError("temperature must be within [0,1]")
        if max_tokens <= 0:
            raise InvalidConfigurationError("max_tokens must be positive")
        object.__setattr__(self, "temperature", temperature)
        object.__setattr__(self, "max_tokens", max_tokens)

    def combined_prompt(self) -> str:
        """Flatten system + user text for providers without a chat format."""
        parts = []
        if self.system_prompt is not None:
            parts.append(f"System: {self.system_prompt}\n\n")
        parts.append(f"User: {self.prompt}\n\nAssistant:")
        return "".join(parts)


@dataclass(frozen=True)
class ProviderStatus:
    available: bool
    models: Tuple[str, ...] = ()
    # Endpoint that answered the probe; may differ from the configured one.
    endpoint: Optional[str] = None
    latency_ms: Optional[float] = None
    error: Optional[str] = None


_UNAVAILABLE = ProviderStatus(available=False)


@dataclass(frozen=True)
class AvailabilitySnapshot:
    """Complete result of one probe batch. Never updated in place."""

    statuses: Mapping[ProviderKind, ProviderStatus] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "statuses", MappingProxyType(dict(self.statuses)))

    @classmethod
    def from_flags(cls, flags: Mapping[ProviderKind, bool]) -> "AvailabilitySnapshot":
        return cls({kind: ProviderStatus(available=bool(ok)) for kind, ok in flags.items()})

    def status(self, kind: ProviderKind) -> ProviderStatus:
        return self.statuses.get(kind, _UNAVAILABLE)

    def is_available(self, kind: ProviderKind) -> bool:
        return self.status(kind).available

    def __getitem__(self, kind: ProviderKind) -> bool:
        return self.is_available(kind)

    def available(self) -> list[ProviderKind]:
        return [kind for kind in ProviderKind if self.is_available(kind)]

    def models(self, kind: ProviderKind) -> Tuple[str, ...]:
        return self.status(kind).models

    def as_flags(self) -> dict[ProviderKind, bool]:
        return {kind: self.is_available(kind) for kind in ProviderKind}


class Backend(Protocol):
    """Shared generate/embed contract implemented by every protocol adapter."""

    kind: ProviderKind

    async def generate(self, request: GenerationRequest) -> str:
        """Run one completion and return the plain output text."""
        ...

    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for `text`.

        Raises UnsupportedOperationError for providers that cannot embed.
        """
        ...


__all__ = [
    "AvailabilitySnapshot",
    "Backend",
    "DEFAULT_MAX_TOKENS",
    "DEFAULT_TEMPERATURE",
    "GenerationRequest",
    "ProviderStatus",
]
