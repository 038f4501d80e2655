from __future__ import annotations

import logging
from typing import List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from backends.http_base import HttpBackend
from backends.interfaces import GenerationRequest
from backends.registry import REGISTRY, ProviderKind

logger = logging.getLogger(__name__)

_INFO = REGISTRY[ProviderKind.OLLAMA]


class OllamaOptions(BaseModel):
    temperature: float
    # Ollama's name for the maximum number of generated tokens.
    num_predict: int


class OllamaGenerateRequest(BaseModel):
    model: str
    prompt: str
    stream: bool = False
    options: OllamaOptions
    system: Optional[str] = None


class OllamaGenerateResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")
    response: str


class OllamaEmbeddingRequest(BaseModel):
    model: str
    prompt: str


class OllamaEmbeddingResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")
    embedding: List[float]


class OllamaModelTag(BaseModel):
    model_config = ConfigDict(extra="ignore")
    name: str


class OllamaTagsResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")
    models: List[OllamaModelTag] = Field(default_factory=list)


def parse_model_names(payload: object) -> List[str]:
    """Extract installed model names from an `/api/tags` body, skipping junk entries."""
    if not isinstance(payload, dict):
        return []
    names: List[str] = []
    for entry in payload.get("models") or []:
        if isinstance(entry, dict) and isinstance(entry.get("name"), str):
            names.append(entry["name"])
    return names


class OllamaClient(HttpBackend):
    """Async HTTP client for the local Ollama server.

    Implements the `Backend` protocol from `backends.interfaces`.
    """

    kind = ProviderKind.OLLAMA

    def __init__(
        self,
        base_url: str = _INFO.default_endpoint,
        model: Optional[str] = None,
        *,
        embedding_model: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        request_timeout_s: float = 600.0,
        connect_timeout_s: float = 5.0,
    ) -> None:
        super().__init__(
            base_url,
            client=client,
            request_timeout_s=request_timeout_s,
            connect_timeout_s=connect_timeout_s,
        )
        self.model: str = (model or _INFO.default_model or "").strip()
        self.embedding_model: str = (embedding_model or _INFO.default_embedding_model or "").strip()

    # -----------------------------
    # Public API
    # -----------------------------
    async def generate(self, request: GenerationRequest) -> str:
        body = OllamaGenerateRequest(
            model=self.model,
            prompt=request.prompt,
            options=OllamaOptions(temperature=request.temperature, num_predict=request.max_tokens),
            system=request.system_prompt,
        )
        try:
            data = await self._post(_INFO.generate_path, body, OllamaGenerateResponse)
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                logger.warning(
                    "Model '%s' not available in Ollama at %s. Pull it first: `ollama pull %s`.",
                    self.model,
                    self.base,
                    self.model,
                )
            raise
        return data.response

    async def embed(self, text: str) -> list[float]:
        body = OllamaEmbeddingRequest(model=self.embedding_model, prompt=text)
        data = await self._post(_INFO.embeddings_path, body, OllamaEmbeddingResponse)
        return list(data.embedding)

    async def list_models(self, *, timeout: Optional[float] = None) -> List[str]:
        """Return the names of locally installed models (`GET /api/tags`)."""
        data = await self._get(_INFO.liveness_path, OllamaTagsResponse, timeout=timeout)
        return [m.name for m in data.models]


__all__ = ["OllamaClient", "parse_model_names"]
