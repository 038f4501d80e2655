"""
Backends package

Provider registry, shared data model and protocol adapters for the local
inference backends: Ollama (native HTTP), TinyChat / TinyLLM / OpenWebUI
(OpenAI-compatible HTTP) and MLX (Python subprocess).
"""

__all__ = [
    "errors",
    "interfaces",
    "registry",
]
