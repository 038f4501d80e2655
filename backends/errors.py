from __future__ import annotations

from typing import Optional


class BackendError(Exception):
    """Base class for every failure raised by the backend router."""

    default_message = "AI backend error."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)


class NoBackendAvailableError(BackendError):
    default_message = "No AI backend available. Install Ollama or configure MLX."


class InvalidConfigurationError(BackendError):
    default_message = "AI backend configuration is invalid."


class InvalidStateError(BackendError):
    default_message = "AI backend is in an invalid state."


class ScriptNotConfiguredError(BackendError):
    default_message = "MLX script directory not configured."


class ExecutionFailedError(BackendError):
    """The subprocess provider exited non-zero; `stderr` is kept verbatim."""

    def __init__(self, stderr: str, returncode: Optional[int] = None) -> None:
        self.stderr = stderr
        self.returncode = returncode
        super().__init__(f"MLX execution failed: {stderr}")


class UnsupportedOperationError(BackendError):
    default_message = "Embeddings not supported with current backend."


class InvalidResponseError(BackendError):
    default_message = "AI backend returned a response that could not be decoded."


__all__ = [
    "BackendError",
    "ExecutionFailedError",
    "InvalidConfigurationError",
    "InvalidResponseError",
    "InvalidStateError",
    "NoBackendAvailableError",
    "ScriptNotConfiguredError",
    "UnsupportedOperationError",
]
