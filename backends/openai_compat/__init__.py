"""Adapters for local servers that speak the OpenAI chat/embeddings schema."""

from backends.openai_compat.client import OpenAICompatibleClient

__all__ = ["OpenAICompatibleClient"]
