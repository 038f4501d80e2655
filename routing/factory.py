from __future__ import annotations

from typing import Optional

import httpx

from backends.errors import InvalidStateError
from backends.interfaces import Backend
from backends.local.mlx_client import MLXClient
from backends.local.ollama_client import OllamaClient
from backends.local.process_worker import ProcessWorker
from backends.openai_compat import OpenAICompatibleClient
from backends.registry import REGISTRY, ProviderKind, TransportKind
from config.schema import Mode, RouterConfig


def resolve_kind(target: ProviderKind | Mode | str) -> ProviderKind:
    """Map a dispatch target to a concrete provider.

    The AUTO tag is a routing policy, not a provider; dispatching on it is a
    programming error.
    """
    if target == Mode.AUTO.value:
        raise InvalidStateError("Cannot dispatch on the unresolved 'auto' mode; resolve a provider first.")
    try:
        return ProviderKind(target)
    except ValueError as e:
        raise InvalidStateError(f"Unknown provider: {target!r}") from e


def build_backend(
    target: ProviderKind | Mode | str,
    config: RouterConfig,
    *,
    endpoint: Optional[str] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    worker: Optional[ProcessWorker] = None,
) -> Backend:
    """Construct the adapter for `target` from the current configuration.

    `endpoint` overrides the configured endpoint, e.g. with the alternate
    address a probe actually reached.
    """
    kind = resolve_kind(target)
    info = REGISTRY[kind]
    base = endpoint or config.endpoint_for(kind)
    if info.transport is TransportKind.HTTP_NATIVE:
        return OllamaClient(
            base,
            config.model_for(kind),
            embedding_model=config.embedding_model_for(kind),
            client=http_client,
            request_timeout_s=config.request_timeout_s,
        )
    if info.transport is TransportKind.HTTP_OPENAI:
        return OpenAICompatibleClient(
            kind,
            base,
            model=config.models.get(kind),
            embedding_model=config.embedding_model_for(kind),
            api_key=config.api_key_for(kind),
            client=http_client,
            request_timeout_s=config.request_timeout_s,
        )
    return MLXClient(
        base,
        script_dir=config.script_dir,
        model=config.model_for(kind),
        worker=worker,
    )


__all__ = ["build_backend", "resolve_kind"]
