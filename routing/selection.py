"""Pure mapping from (mode, availability snapshot) to the active backend."""

from __future__ import annotations

from typing import List, Optional, Sequence

from backends.interfaces import AvailabilitySnapshot
from backends.registry import ProviderKind
from config.schema import Mode

# Native HTTP first, then the OpenAI-compatible servers, the subprocess provider last.
AUTO_PRIORITY: Sequence[ProviderKind] = (
    ProviderKind.OLLAMA,
    ProviderKind.TINYCHAT,
    ProviderKind.TINYLLM,
    ProviderKind.OPENWEBUI,
    ProviderKind.MLX,
)


def select(
    mode: Mode,
    snapshot: AvailabilitySnapshot,
    priority: Sequence[ProviderKind] = AUTO_PRIORITY,
) -> Optional[ProviderKind]:
    """Resolve the provider that should serve calls, or None.

    An explicit mode resolves to its own provider only when that provider is
    available; it is never substituted by another one.
    """
    explicit = Mode(mode).provider
    if explicit is not None:
        return explicit if snapshot.is_available(explicit) else None
    for kind in priority:
        if snapshot.is_available(kind):
            return kind
    return None


def available_in_priority_order(
    snapshot: AvailabilitySnapshot,
    priority: Sequence[ProviderKind] = AUTO_PRIORITY,
) -> List[ProviderKind]:
    return [kind for kind in priority if snapshot.is_available(kind)]


__all__ = ["AUTO_PRIORITY", "available_in_priority_order", "select"]
