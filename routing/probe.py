"""Concurrent liveness probing for every registered provider."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, List, Optional, Tuple

import httpx

from backends.interfaces import AvailabilitySnapshot, ProviderStatus
from backends.local.mlx_client import MLX_IMPORT_CHECK
from backends.local.ollama_client import parse_model_names
from backends.local.process_worker import ProcessWorker
from backends.registry import REGISTRY, ProviderKind, TransportKind
from config.schema import RouterConfig

logger = logging.getLogger(__name__)

# Slack on top of a probe's own timeouts before the batch gives up on it.
_CEILING_GRACE_S = 0.5


def _elapsed_ms(t0: float) -> float:
    return round((time.perf_counter() - t0) * 1000.0, 3)


class AvailabilityProbe:
    """Checks which providers are reachable right now.

    Every provider is probed concurrently and in isolation: an error, a
    timeout or an exception in one probe is recorded as "unavailable" for that
    provider only. `probe_all` returns once every probe has settled and never
    raises for provider faults.
    """

    def __init__(
        self,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        worker: Optional[ProcessWorker] = None,
        kinds: Iterable[ProviderKind] = tuple(ProviderKind),
    ) -> None:
        self._client = http_client
        self._owns_worker = worker is None
        self._worker = worker or ProcessWorker(max_workers=1)
        self.kinds: Tuple[ProviderKind, ...] = tuple(kinds)

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient() as client:
            yield client

    async def probe_all(self, config: RouterConfig) -> AvailabilitySnapshot:
        async with self._session() as client:
            results = await asyncio.gather(*(self._probe_isolated(kind, config, client) for kind in self.kinds))
        snapshot = AvailabilitySnapshot(dict(zip(self.kinds, results)))
        logger.info(
            "Probe batch complete: %s",
            ", ".join(f"{k.value}={'up' if snapshot.is_available(k) else 'down'}" for k in self.kinds),
        )
        return snapshot

    def _http_candidates(self, kind: ProviderKind, config: RouterConfig) -> List[str]:
        primary = config.endpoint_for(kind)
        candidates = [primary]
        for fallback in REGISTRY[kind].fallback_endpoints:
            if fallback.rstrip("/") != primary:
                candidates.append(fallback.rstrip("/"))
        return candidates

    def _ceiling(self, kind: ProviderKind, config: RouterConfig) -> float:
        if REGISTRY[kind].is_http:
            return config.probe_timeout_s * len(self._http_candidates(kind, config)) + _CEILING_GRACE_S
        return config.process_probe_timeout_s + _CEILING_GRACE_S

    async def _probe_isolated(
        self, kind: ProviderKind, config: RouterConfig, client: httpx.AsyncClient
    ) -> ProviderStatus:
        t0 = time.perf_counter()
        try:
            if REGISTRY[kind].is_http:
                coro = self._probe_http(kind, config, client)
            else:
                coro = self._probe_process(kind, config)
            status = await asyncio.wait_for(coro, timeout=self._ceiling(kind, config))
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            logger.debug("Probe for %s timed out", kind.value)
            return ProviderStatus(available=False, latency_ms=_elapsed_ms(t0), error="timeout")
        except Exception as e:
            logger.debug("Probe for %s failed: %s", kind.value, e)
            return ProviderStatus(available=False, latency_ms=_elapsed_ms(t0), error=f"{type(e).__name__}: {e}")
        return status

    async def _probe_http(self, kind: ProviderKind, config: RouterConfig, client: httpx.AsyncClient) -> ProviderStatus:
        info = REGISTRY[kind]
        last_error: Optional[str] = None
        for base in self._http_candidates(kind, config):
            t0 = time.perf_counter()
            url = f"{base}{info.liveness_path}"
            try:
                resp = await client.get(url, timeout=config.probe_timeout_s)
            except (httpx.HTTPError, OSError) as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.debug("Probe GET %s failed: %s", url, last_error)
                continue
            if not resp.is_success:
                last_error = f"HTTP {resp.status_code}"
                logger.debug("Probe GET %s returned %s", url, resp.status_code)
                continue
            models: Tuple[str, ...] = ()
            if info.transport is TransportKind.HTTP_NATIVE:
                models = self._parse_models(kind, resp)
            if base != config.endpoint_for(kind):
                logger.info("%s answered on alternate endpoint %s", info.display_name, base)
            return ProviderStatus(available=True, models=models, endpoint=base, latency_ms=_elapsed_ms(t0))
        return ProviderStatus(available=False, error=last_error)

    @staticmethod
    def _parse_models(kind: ProviderKind, resp: httpx.Response) -> Tuple[str, ...]:
        # Model discovery is opportunistic; it never affects reachability.
        try:
            return tuple(parse_model_names(resp.json()))
        except ValueError as e:
            logger.debug("Could not parse model list from %s: %s", kind.value, e)
            return ()

    async def _probe_process(self, kind: ProviderKind, config: RouterConfig) -> ProviderStatus:
        t0 = time.perf_counter()
        python_path = config.endpoint_for(kind)
        proc = await self._worker.run([python_path, "-c", MLX_IMPORT_CHECK], timeout=config.process_probe_timeout_s)
        if proc.returncode == 0:
            return ProviderStatus(available=True, endpoint=python_path, latency_ms=_elapsed_ms(t0))
        error = (proc.stderr or "").strip().splitlines()
        return ProviderStatus(
            available=False,
            latency_ms=_elapsed_ms(t0),
            error=error[-1] if error else f"exit status {proc.returncode}",
        )

    def close(self) -> None:
        if self._owns_worker:
            self._worker.close()


__all__ = ["AvailabilityProbe"]
