from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from backends.errors import InvalidConfigurationError
from backends.http_base import normalize_http_endpoint
from backends.registry import REGISTRY, ProviderKind


class Mode(str, Enum):
    """User-selected routing mode: one explicit provider or automatic."""

    AUTO = "auto"
    OLLAMA = ProviderKind.OLLAMA.value
    TINYCHAT = ProviderKind.TINYCHAT.value
    TINYLLM = ProviderKind.TINYLLM.value
    OPENWEBUI = ProviderKind.OPENWEBUI.value
    MLX = ProviderKind.MLX.value

    @classmethod
    def explicit(cls, kind: ProviderKind | str) -> "Mode":
        return cls(ProviderKind(kind).value)

    @property
    def provider(self) -> Optional[ProviderKind]:
        """Explicit provider for this mode, or None for AUTO."""
        if self is Mode.AUTO:
            return None
        return ProviderKind(self.value)

    @property
    def label(self) -> str:
        if self is Mode.AUTO:
            return "Auto (Prefer Ollama)"
        return ProviderKind(self.value).display_name


def validate_endpoint(kind: ProviderKind, value: str) -> str:
    """Normalize an endpoint override; raises ValueError when malformed."""
    vv = (value or "").strip()
    if not vv:
        raise ValueError(f"endpoint for {kind.value} must be a non-empty string")
    if not REGISTRY[kind].is_http:
        return vv
    try:
        return normalize_http_endpoint(vv)
    except ValueError as e:
        raise ValueError(f"{kind.value}: {e}") from e


class RouterConfig(BaseModel):
    """Persisted user preferences for backend routing.

    Instances are immutable; use `with_changes` to derive an updated copy.
    Endpoint and model maps hold overrides only; lookups fall back to the
    provider registry defaults.
    """

    model_config = ConfigDict(frozen=True, protected_namespaces=(), use_enum_values=False)

    mode: Mode = Mode.AUTO
    endpoints: Dict[ProviderKind, str] = Field(default_factory=dict)
    models: Dict[ProviderKind, str] = Field(default_factory=dict)
    embedding_models: Dict[ProviderKind, str] = Field(default_factory=dict)
    api_keys: Dict[ProviderKind, str] = Field(default_factory=dict)
    # Directory the MLX provider writes its generated scripts into.
    script_dir: str = Field(default="")
    probe_timeout_s: float = Field(default=1.0)
    process_probe_timeout_s: float = Field(default=10.0)
    request_timeout_s: float = Field(default=600.0)

    @field_validator("endpoints")
    @classmethod
    def _validate_endpoints(cls, v: Dict[ProviderKind, str]):  # type: ignore[override]
        normalized: Dict[ProviderKind, str] = {}
        for kind, value in (v or {}).items():
            if value is None or not str(value).strip():
                continue
            normalized[kind] = validate_endpoint(kind, str(value))
        return normalized

    @field_validator("models", "embedding_models", "api_keys")
    @classmethod
    def _drop_blank(cls, v: Dict[ProviderKind, str]):  # type: ignore[override]
        return {k: str(val).strip() for k, val in (v or {}).items() if val is not None and str(val).strip()}

    @field_validator("script_dir")
    @classmethod
    def _strip_script_dir(cls, v: str):  # type: ignore[override]
        return (v or "").strip()

    @field_validator("probe_timeout_s", "process_probe_timeout_s", "request_timeout_s")
    @classmethod
    def _validate_positive(cls, v: float, info):  # type: ignore[override]
        fv = float(v)
        if fv <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return fv

    def endpoint_for(self, kind: ProviderKind) -> str:
        return self.endpoints.get(kind) or REGISTRY[kind].default_endpoint

    def model_for(self, kind: ProviderKind) -> Optional[str]:
        return self.models.get(kind) or REGISTRY[kind].default_model

    def embedding_model_for(self, kind: ProviderKind) -> Optional[str]:
        return self.embedding_models.get(kind) or REGISTRY[kind].default_embedding_model

    def api_key_for(self, kind: ProviderKind) -> Optional[str]:
        return self.api_keys.get(kind)

    def with_changes(self, **changes: Any) -> "RouterConfig":
        """Return a validated copy with `changes` applied.

        Raises InvalidConfigurationError when the result does not validate.
        """
        data = self.model_dump()
        data.update(changes)
        return parse_config(data)


def parse_config(data: Dict[str, Any]) -> RouterConfig:
    try:
        return RouterConfig.model_validate(data)
    except ValidationError as e:
        raise InvalidConfigurationError(f"Invalid backend router configuration:\n{e}") from e


__all__ = ["Mode", "RouterConfig", "parse_config", "validate_endpoint"]
