from __future__ import annotations

import logging
from typing import List, Optional

import httpx

from backends.errors import InvalidConfigurationError
from backends.http_base import HttpBackend
from backends.interfaces import GenerationRequest
from backends.openai_compat.schemas import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatMessage,
    EmbeddingRequest,
    EmbeddingResponse,
)
from backends.registry import REGISTRY, ProviderKind, TransportKind

logger = logging.getLogger(__name__)


def build_messages(request: GenerationRequest) -> List[ChatMessage]:
    messages: List[ChatMessage] = []
    if request.system_prompt is not None:
        messages.append(ChatMessage(role="system", content=request.system_prompt))
    messages.append(ChatMessage(role="user", content=request.prompt))
    return messages


class OpenAICompatibleClient(HttpBackend):
    """Adapter for servers exposing an OpenAI-style chat/embeddings schema.

    TinyChat, TinyLLM and OpenWebUI share the request and response shapes and
    differ only in base endpoint and paths, which come from the registry.
    """

    def __init__(
        self,
        kind: ProviderKind,
        base_url: Optional[str] = None,
        *,
        model: Optional[str] = None,
        embedding_model: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        request_timeout_s: float = 600.0,
        connect_timeout_s: float = 5.0,
    ) -> None:
        info = REGISTRY[kind]
        if info.transport is not TransportKind.HTTP_OPENAI:
            raise InvalidConfigurationError(f"{info.display_name} is not an OpenAI-compatible provider")
        self.kind = kind
        self.info = info
        super().__init__(
            base_url or info.default_endpoint,
            client=client,
            api_key=api_key,
            request_timeout_s=request_timeout_s,
            connect_timeout_s=connect_timeout_s,
        )
        self.model = model
        self.embedding_model = embedding_model or info.default_embedding_model or ""

    async def generate(self, request: GenerationRequest) -> str:
        body = ChatCompletionRequest(
            messages=build_messages(request),
            max_tokens=request.max_tokens,
            temperature=request.temperature,
            model=self.model,
        )
        data = await self._post(self.info.generate_path, body, ChatCompletionResponse)
        if not data.choices:
            logger.warning("%s returned no choices; treating as empty output", self.info.display_name)
        return data.text

    async def embed(self, text: str) -> list[float]:
        body = EmbeddingRequest(input=text, model=self.embedding_model)
        data = await self._post(self.info.embeddings_path, body, EmbeddingResponse)
        return data.vector


__all__ = ["OpenAICompatibleClient", "build_messages"]
