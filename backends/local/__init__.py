"""Local inference backends.

This package contains clients for running inference against local engines
such as Ollama (HTTP API) or MLX (a spawned Python interpreter).
"""

__all__ = [
    "mlx_client",
    "ollama_client",
    "process_worker",
]
