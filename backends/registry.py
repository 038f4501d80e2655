"""Static catalog of the supported local inference providers.

Every provider the router knows about is listed here together with the fixed
facts needed to reach it: how it is transported, where it lives by default,
which path answers liveness probes and whether it can produce embeddings.
Nothing in this module is mutated at runtime.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple


class TransportKind(str, Enum):
    HTTP_NATIVE = "http-native"
    HTTP_OPENAI = "http-openai-compatible"
    SUBPROCESS = "subprocess"


class ProviderKind(str, Enum):
    OLLAMA = "ollama"
    TINYCHAT = "tinychat"
    TINYLLM = "tinyllm"
    OPENWEBUI = "openwebui"
    MLX = "mlx"

    @property
    def info(self) -> "ProviderInfo":
        return REGISTRY[self]

    @property
    def display_name(self) -> str:
        return REGISTRY[self].display_name


@dataclass(frozen=True)
class ProviderInfo:
    kind: ProviderKind
    display_name: str
    transport: TransportKind
    # Base URL for HTTP providers, interpreter path for the subprocess provider.
    default_endpoint: str
    supports_embeddings: bool
    description: str
    liveness_path: str = "/"
    generate_path: str = ""
    embeddings_path: str = ""
    fallback_endpoints: Tuple[str, ...] = ()
    default_model: Optional[str] = None
    default_embedding_model: Optional[str] = None
    attribution: Optional[str] = None

    @property
    def is_http(self) -> bool:
        return self.transport in (TransportKind.HTTP_NATIVE, TransportKind.HTTP_OPENAI)


_OPENAI_EMBEDDING_MODEL = "text-embedding-ada-002"

_ENTRIES = (
    ProviderInfo(
        kind=ProviderKind.OLLAMA,
        display_name="Ollama",
        transport=TransportKind.HTTP_NATIVE,
        default_endpoint="http://localhost:11434",
        supports_embeddings=True,
        description="HTTP-based API (Ollama running on localhost:11434)",
        liveness_path="/api/tags",
        generate_path="/api/generate",
        embeddings_path="/api/embeddings",
        default_model="mistral:latest",
        default_embedding_model="nomic-embed-text",
    ),
    ProviderInfo(
        kind=ProviderKind.TINYCHAT,
        display_name="TinyChat",
        transport=TransportKind.HTTP_OPENAI,
        default_endpoint="http://localhost:8000",
        supports_embeddings=True,
        description="TinyChat chatbot interface with an OpenAI-compatible API (localhost:8000)",
        generate_path="/api/chat/stream",
        embeddings_path="/v1/embeddings",
        default_embedding_model=_OPENAI_EMBEDDING_MODEL,
        attribution="TinyChat by Jason Cox (https://github.com/jasonacox/tinychat)",
    ),
    ProviderInfo(
        kind=ProviderKind.TINYLLM,
        display_name="TinyLLM",
        transport=TransportKind.HTTP_OPENAI,
        default_endpoint="http://localhost:8000",
        supports_embeddings=True,
        description="TinyLLM lightweight server (localhost:8000)",
        generate_path="/v1/chat/completions",
        embeddings_path="/v1/embeddings",
        default_embedding_model=_OPENAI_EMBEDDING_MODEL,
        attribution="TinyLLM by Jason Cox (https://github.com/jasonacox/TinyLLM)",
    ),
    ProviderInfo(
        kind=ProviderKind.OPENWEBUI,
        display_name="OpenWebUI",
        transport=TransportKind.HTTP_OPENAI,
        default_endpoint="http://localhost:8080",
        supports_embeddings=True,
        description="OpenWebUI self-hosted AI platform (localhost:8080)",
        generate_path="/api/chat/completions",
        embeddings_path="/api/embeddings",
        fallback_endpoints=("http://localhost:3000",),
        default_embedding_model=_OPENAI_EMBEDDING_MODEL,
        attribution="OpenWebUI Community Project (https://github.com/open-webui/open-webui)",
    ),
    ProviderInfo(
        kind=ProviderKind.MLX,
        display_name="MLX Toolkit",
        transport=TransportKind.SUBPROCESS,
        default_endpoint="/opt/homebrew/bin/python3",
        supports_embeddings=False,
        description="Python MLX Toolkit (runs models locally via Python)",
        default_model="mlx-community/Llama-3.2-1B-Instruct-4bit",
    ),
)

REGISTRY: Mapping[ProviderKind, ProviderInfo] = MappingProxyType({e.kind: e for e in _ENTRIES})


def provider_info(kind: ProviderKind | str) -> ProviderInfo:
    return REGISTRY[ProviderKind(kind)]


def supports_embeddings(kind: ProviderKind | str) -> bool:
    return provider_info(kind).supports_embeddings


__all__ = [
    "ProviderInfo",
    "ProviderKind",
    "REGISTRY",
    "TransportKind",
    "provider_info",
    "supports_embeddings",
]
