"""Wire schemas shared by every OpenAI-compatible provider."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatCompletionRequest(BaseModel):
    messages: List[ChatMessage]
    max_tokens: int
    temperature: float
    stream: bool = False
    # Only sent when a model is configured for the provider.
    model: Optional[str] = None


class ChoiceMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")
    content: str


class Choice(BaseModel):
    model_config = ConfigDict(extra="ignore")
    message: ChoiceMessage


class ChatCompletionResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")
    choices: List[Choice] = Field(default_factory=list)

    @property
    def text(self) -> str:
        return self.choices[0].message.content if self.choices else ""


class EmbeddingRequest(BaseModel):
    input: str
    model: str


class EmbeddingData(BaseModel):
    model_config = ConfigDict(extra="ignore")
    embedding: List[float]


class EmbeddingResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")
    data: List[EmbeddingData] = Field(default_factory=list)

    @property
    def vector(self) -> List[float]:
        return list(self.data[0].embedding) if self.data else []


__all__ = [
    "ChatCompletionRequest",
    "ChatCompletionResponse",
    "ChatMessage",
    "EmbeddingRequest",
    "EmbeddingResponse",
]
