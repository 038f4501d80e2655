from __future__ import annotations

import asyncio
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Mapping, Optional, Protocol, TypeVar

import httpx

from backends.errors import InvalidConfigurationError, NoBackendAvailableError, UnsupportedOperationError
from backends.interfaces import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    AvailabilitySnapshot,
    Backend,
    GenerationRequest,
)
from backends.local.process_worker import ProcessWorker
from backends.registry import REGISTRY, ProviderKind, supports_embeddings
from config.schema import Mode, RouterConfig
from routing.factory import build_backend, resolve_kind
from routing.probe import AvailabilityProbe
from routing.selection import available_in_priority_order, select
from routing.status import EventKind, Listener, RouterState, StatusEvent, StatusNotifier
from telemetry.usage import UsageStats, UsageTracker

logger = logging.getLogger(__name__)

CONNECTION_TEST_PROMPT = "Say 'hello' in one word"


class ConfigStore(Protocol):
    def load(self) -> RouterConfig:
        ...

    def save(self, config: RouterConfig) -> None:
        ...


class Prober(Protocol):
    async def probe_all(self, config: RouterConfig) -> AvailabilitySnapshot:
        ...


class UsageStore(Protocol):
    def load(self) -> Mapping[ProviderKind, UsageStats]:
        ...

    def save(self, stats: Mapping[ProviderKind, UsageStats]) -> None:
        ...


BackendFactory = Callable[..., Backend]
T = TypeVar("T")


@dataclass(frozen=True)
class ConnectionTestResult:
    provider: ProviderKind
    success: bool
    response_time_s: Optional[float]
    error: Optional[str]
    timestamp: datetime


class BackendManager:
    """Facade the application talks to for generation and embeddings.

    Owns the configuration and the latest availability snapshot, runs probe
    batches, keeps the active backend resolved and dispatches calls to the
    matching adapter. Construct one per application and hand it to consumers;
    call `start()` (or use it as an async context manager) to run the first
    probe batch.

    All state changes (config mutations and probe batches) are serialized on a
    single lock and published as one immutable `RouterState`. Generate/embed
    calls read that state once when they start and run concurrently.
    """

    def __init__(
        self,
        store: ConfigStore,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        process_worker: Optional[ProcessWorker] = None,
        probe: Optional[Prober] = None,
        backend_factory: Optional[BackendFactory] = None,
        usage_store: Optional[UsageStore] = None,
    ) -> None:
        self._store = store
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient()
        self._owns_worker = process_worker is None
        self._worker = process_worker or ProcessWorker()
        # Liveness checks run on the probe's own process worker, never queued behind generations.
        self._owned_probe = AvailabilityProbe(http_client=self._http) if probe is None else None
        self._probe: Prober = probe or self._owned_probe
        self._factory: BackendFactory = backend_factory or build_backend
        self._lock = asyncio.Lock()
        self._notifier = StatusNotifier()
        self._busy = 0
        self._state = RouterState(config=store.load())
        self._usage_store = usage_store
        self.usage = UsageTracker(usage_store.load() if usage_store is not None else None)
        self._monitor_task: Optional["asyncio.Task[None]"] = None
        self.connection_results: Dict[ProviderKind, ConnectionTestResult] = {}

    # -----------------------------
    # Lifecycle
    # -----------------------------
    async def start(self) -> Optional[ProviderKind]:
        return await self.refresh_availability()

    async def aclose(self) -> None:
        await self.stop_monitoring()
        if self._owned_probe is not None:
            self._owned_probe.close()
        if self._owns_http:
            await self._http.aclose()
        if self._owns_worker:
            self._worker.close()

    async def __aenter__(self) -> "BackendManager":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    # -----------------------------
    # Background monitoring
    # -----------------------------
    @property
    def is_monitoring(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    def start_monitoring(self, interval_s: float = 60.0) -> None:
        """Re-probe every `interval_s` seconds until `stop_monitoring()`.

        Providers that go online or offline between batches are announced
        with a PROVIDER_STATUS_CHANGED event each. Restarting replaces the
        running monitor.
        """
        if interval_s <= 0:
            raise InvalidConfigurationError("monitoring interval must be positive")
        if self._monitor_task is not None:
            self._monitor_task.cancel()
        self._monitor_task = asyncio.get_running_loop().create_task(self._monitor(float(interval_s)))
        logger.info("Background availability monitoring every %.1fs", interval_s)

    async def stop_monitoring(self) -> None:
        task, self._monitor_task = self._monitor_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _monitor(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            try:
                await self.refresh_availability()
            except Exception:
                # Keep monitoring; the next tick retries.
                logger.exception("Background availability refresh failed")

    # -----------------------------
    # Status surface
    # -----------------------------
    def status(self) -> RouterState:
        return self._state

    @property
    def config(self) -> RouterConfig:
        return self._state.config

    @property
    def mode(self) -> Mode:
        return self._state.config.mode

    @property
    def snapshot(self) -> AvailabilitySnapshot:
        return self._state.snapshot

    @property
    def active_backend(self) -> Optional[ProviderKind]:
        return self._state.active_backend

    @property
    def resolved(self) -> bool:
        return self._state.resolved

    @property
    def is_busy(self) -> bool:
        return self._busy > 0

    def available_backends(self) -> List[ProviderKind]:
        return available_in_priority_order(self._state.snapshot)

    def usage_stats(self) -> Dict[ProviderKind, UsageStats]:
        return self.usage.snapshot()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register `listener` for status events; returns an unsubscribe callable."""
        return self._notifier.subscribe(listener)

    # -----------------------------
    # Availability
    # -----------------------------
    async def refresh_availability(self) -> Optional[ProviderKind]:
        """Probe every provider and recompute the active backend."""
        async with self._lock:
            return await self._probe_and_publish()

    async def _probe_and_publish(self) -> Optional[ProviderKind]:
        # Caller holds self._lock.
        before = self._state
        config = before.config
        with self._busy_scope():
            snapshot = await self._probe.probe_all(config)
        config = await self._reconcile_ollama_model(config, snapshot)
        previous = before.active_backend
        decision = select(config.mode, snapshot)
        self._publish(
            RouterState(config=config, snapshot=snapshot, active_backend=decision, resolved=True),
            EventKind.AVAILABILITY_CHANGED,
        )
        if before.resolved:
            self._announce_provider_changes(before.snapshot)
        if decision != previous:
            logger.info(
                "Active backend: %s (mode=%s)",
                decision.display_name if decision else "none",
                config.mode.value,
            )
        return decision

    def _announce_provider_changes(self, previous: AvailabilitySnapshot) -> None:
        state = self._state
        for kind in ProviderKind:
            was_up, is_up = previous.is_available(kind), state.snapshot.is_available(kind)
            if was_up == is_up:
                continue
            logger.info("%s is now %s", kind.display_name, "online" if is_up else "offline")
            self._notifier.publish(
                StatusEvent(
                    kind=EventKind.PROVIDER_STATUS_CHANGED,
                    state=state,
                    busy=self.is_busy,
                    provider=kind,
                    available=is_up,
                )
            )

    async def _reconcile_ollama_model(self, config: RouterConfig, snapshot: AvailabilitySnapshot) -> RouterConfig:
        installed = snapshot.models(ProviderKind.OLLAMA)
        current = config.model_for(ProviderKind.OLLAMA)
        if not installed or current in installed:
            return config
        updated = config.with_changes(models={**config.models, ProviderKind.OLLAMA: installed[0]})
        await self._save_config(updated)
        logger.warning("Ollama model '%s' not found, auto-selected '%s'", current, installed[0])
        return updated

    # -----------------------------
    # Configuration
    # -----------------------------
    async def update_config(self, **changes: Any) -> Optional[ProviderKind]:
        """Apply, persist and re-probe a configuration change.

        The new configuration is saved before the probe batch starts. The
        decision is recomputed against the current snapshot right away (the
        mode may have changed) and again once the new batch completes.
        Raises InvalidConfigurationError without persisting anything when the
        change does not validate.
        """
        async with self._lock:
            state = self._state
            new_config = state.config.with_changes(**changes)
            await self._save_config(new_config)
            decision = select(new_config.mode, state.snapshot) if state.resolved else None
            self._publish(replace(state, config=new_config, active_backend=decision), EventKind.CONFIG_CHANGED)
            return await self._probe_and_publish()

    async def set_mode(self, mode: Mode | ProviderKind | str) -> Optional[ProviderKind]:
        return await self.update_config(mode=Mode(mode))

    async def set_endpoint(self, kind: ProviderKind, endpoint: Optional[str]) -> Optional[ProviderKind]:
        """Override a provider's endpoint; None or "" restores the default."""
        endpoints = dict(self.config.endpoints)
        endpoints[ProviderKind(kind)] = endpoint or ""
        return await self.update_config(endpoints=endpoints)

    async def set_model(self, kind: ProviderKind, model: Optional[str]) -> Optional[ProviderKind]:
        models = dict(self.config.models)
        models[ProviderKind(kind)] = model or ""
        return await self.update_config(models=models)

    async def set_embedding_model(self, kind: ProviderKind, model: Optional[str]) -> Optional[ProviderKind]:
        models = dict(self.config.embedding_models)
        models[ProviderKind(kind)] = model or ""
        return await self.update_config(embedding_models=models)

    async def set_api_key(self, kind: ProviderKind, api_key: Optional[str]) -> Optional[ProviderKind]:
        keys = dict(self.config.api_keys)
        keys[ProviderKind(kind)] = api_key or ""
        return await self.update_config(api_keys=keys)

    async def set_script_dir(self, script_dir: Optional[str]) -> Optional[ProviderKind]:
        return await self.update_config(script_dir=script_dir or "")

    # -----------------------------
    # Unified AI interface
    # -----------------------------
    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> str:
        """Generate a completion with the active backend.

        Raises NoBackendAvailableError without any I/O when nothing is
        resolved. Adapter errors reach the caller unchanged; there is no retry
        and no fallback to another provider.
        """
        state = self._state
        kind = state.active_backend
        if kind is None:
            raise NoBackendAvailableError()
        request = GenerationRequest(
            prompt=prompt,
            system_prompt=system_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        backend = self._backend_for(kind, state)
        return await self._dispatch(kind, lambda: backend.generate(request))

    async def embed(self, text: str) -> list[float]:
        """Embed `text` with the active backend.

        A provider without embedding support is rejected before the
        availability check, so an explicit MLX mode always reports the
        operation as unsupported.
        """
        state = self._state
        kind = state.active_backend
        target = kind or state.mode.provider
        if target is not None and not supports_embeddings(target):
            raise UnsupportedOperationError(f"Embeddings not supported with {target.display_name}.")
        if kind is None:
            raise NoBackendAvailableError()
        backend = self._backend_for(kind, state)
        return await self._dispatch(kind, lambda: backend.embed(text))

    async def test_connection(self, kind: ProviderKind | str) -> ConnectionTestResult:
        """Send a tiny prompt straight to `kind`, bypassing the active backend.

        Provider faults are captured in the returned result rather than raised.
        """
        provider = resolve_kind(kind)
        request = GenerationRequest(prompt=CONNECTION_TEST_PROMPT, temperature=0.1, max_tokens=10)
        t0 = time.perf_counter()
        try:
            backend = self._backend_for(provider, self._state)
            with self._busy_scope():
                await backend.generate(request)
        except Exception as e:
            logger.info("Connection test failed for %s: %s", provider.display_name, e)
            result = ConnectionTestResult(
                provider=provider,
                success=False,
                response_time_s=None,
                error=str(e) or type(e).__name__,
                timestamp=datetime.now(tz=timezone.utc),
            )
        else:
            elapsed = time.perf_counter() - t0
            logger.info("Connection test passed for %s: %.2fs", provider.display_name, elapsed)
            result = ConnectionTestResult(
                provider=provider,
                success=True,
                response_time_s=elapsed,
                error=None,
                timestamp=datetime.now(tz=timezone.utc),
            )
        self.connection_results[provider] = result
        return result

    # -----------------------------
    # Internals
    # -----------------------------
    def _backend_for(self, kind: ProviderKind, state: RouterState) -> Backend:
        endpoint = None
        reached = state.snapshot.status(kind).endpoint
        # Only an alternate address the probe discovered overrides the config.
        if reached and reached in REGISTRY[kind].fallback_endpoints:
            endpoint = reached
        return self._factory(
            kind,
            state.config,
            endpoint=endpoint,
            http_client=self._http,
            worker=self._worker,
        )

    async def _dispatch(self, kind: ProviderKind, call: Callable[[], Awaitable[T]]) -> T:
        with self._busy_scope():
            try:
                with self.usage.track(kind):
                    return await call()
            finally:
                await self._save_usage()

    async def _save_config(self, config: RouterConfig) -> None:
        await asyncio.get_running_loop().run_in_executor(None, self._store.save, config)

    async def _save_usage(self) -> None:
        if self._usage_store is None:
            return
        stats = self.usage.snapshot()
        try:
            await asyncio.get_running_loop().run_in_executor(None, self._usage_store.save, stats)
        except OSError as e:
            # The call's own outcome takes precedence over bookkeeping.
            logger.warning("Could not persist usage stats: %s", e)

    def _publish(self, state: RouterState, kind: EventKind) -> None:
        self._state = state
        self._notifier.publish(StatusEvent(kind=kind, state=state, busy=self.is_busy))

    @contextmanager
    def _busy_scope(self) -> Iterator[None]:
        self._busy += 1
        if self._busy == 1:
            self._notifier.publish(StatusEvent(kind=EventKind.BUSY_CHANGED, state=self._state, busy=True))
        try:
            yield
        finally:
            self._busy -= 1
            if self._busy == 0:
                self._notifier.publish(StatusEvent(kind=EventKind.BUSY_CHANGED, state=self._state, busy=False))


__all__ = ["BackendManager", "CONNECTION_TEST_PROMPT", "ConfigStore", "ConnectionTestResult", "UsageStore"]
