"""Per-provider usage accounting for dispatched generate/embed calls.

Tracks request counts, failures and a running average latency so a status
surface can show how each local backend has been performing.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Mapping, Optional

from backends.registry import ProviderKind


@dataclass(frozen=True)
class UsageStats:
    total_requests: int = 0
    failed_requests: int = 0
    average_response_time_s: float = 0.0
    last_used: Optional[datetime] = None

    def record(self, response_time_s: float, *, success: bool) -> "UsageStats":
        total = self.total_requests + 1
        # Running average over every request, failed ones included.
        avg = (self.average_response_time_s * self.total_requests + response_time_s) / total
        return replace(
            self,
            total_requests=total,
            failed_requests=self.failed_requests + (0 if success else 1),
            average_response_time_s=avg,
            last_used=datetime.now(tz=timezone.utc),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "failed_requests": self.failed_requests,
            "average_response_time_s": self.average_response_time_s,
            "last_used": self.last_used.isoformat() if self.last_used else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UsageStats":
        """Rebuild stats from `to_dict` output; raises ValueError/TypeError on bad values."""
        last_used = data.get("last_used")
        if isinstance(last_used, str):
            last_used = datetime.fromisoformat(last_used)
        elif not isinstance(last_used, datetime):
            last_used = None
        return cls(
            total_requests=int(data.get("total_requests", 0)),
            failed_requests=int(data.get("failed_requests", 0)),
            average_response_time_s=float(data.get("average_response_time_s", 0.0)),
            last_used=last_used,
        )


@dataclass
class UsageSession:
    """Times a single call; the outcome is recorded when the session closes."""

    provider: ProviderKind
    success: bool = False
    _start: float = field(init=False, default_factory=time.perf_counter)

    @property
    def elapsed_s(self) -> float:
        return time.perf_counter() - self._start


class UsageTracker:
    def __init__(self, initial: Optional[Mapping[ProviderKind, UsageStats]] = None) -> None:
        self._stats: Dict[ProviderKind, UsageStats] = dict(initial or {})
        self._lock = threading.Lock()

    def record(self, provider: ProviderKind, response_time_s: float, *, success: bool) -> UsageStats:
        with self._lock:
            stats = self._stats.get(provider, UsageStats()).record(response_time_s, success=success)
            self._stats[provider] = stats
        return stats

    @contextmanager
    def track(self, provider: ProviderKind) -> Iterator[UsageSession]:
        """Context manager timing one call against `provider`.

        The call counts as failed unless the block completes without raising.
        """
        session = UsageSession(provider=provider)
        try:
            yield session
            session.success = True
        finally:
            self.record(provider, session.elapsed_s, success=session.success)

    def stats(self, provider: ProviderKind) -> UsageStats:
        with self._lock:
            return self._stats.get(provider, UsageStats())

    def snapshot(self) -> Dict[ProviderKind, UsageStats]:
        with self._lock:
            return dict(self._stats)

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()


__all__ = ["UsageSession", "UsageStats", "UsageTracker"]
