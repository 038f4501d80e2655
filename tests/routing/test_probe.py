from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Callable, Dict, Union

import httpx
import pytest

from backends.registry import ProviderKind
from config.schema import RouterConfig
from routing.probe import AvailabilityProbe

Route = Union[int, Callable[[httpx.Request], httpx.Response]]

_ENDPOINTS = {
    ProviderKind.OLLAMA: "http://ollama:11434",
    ProviderKind.TINYCHAT: "http://tinychat:8000",
    ProviderKind.TINYLLM: "http://tinyllm:8000",
    ProviderKind.OPENWEBUI: "http://webui:8080",
    ProviderKind.MLX: "/nonexistent/bin/python3",
}


def _config(**overrides) -> RouterConfig:
    endpoints = dict(_ENDPOINTS)
    endpoints.update(overrides.pop("endpoints", {}))
    return RouterConfig(endpoints=endpoints, **overrides)


def _mock_client(routes: Dict[str, Route]) -> httpx.AsyncClient:
    """Routes are keyed by "host:port/path"; anything else is connection-refused."""

    async def handler(request: httpx.Request) -> httpx.Response:
        key = f"{request.url.host}:{request.url.port}{request.url.path}"
        route = routes.get(key)
        if route is None:
            raise httpx.ConnectError("Connection refused", request=request)
        if isinstance(route, int):
            return httpx.Response(route)
        result = route(request)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_each_provider_is_recorded_independently() -> None:
    routes: Dict[str, Route] = {
        "ollama:11434/api/tags": lambda r: httpx.Response(200, json={"models": [{"name": "mistral:latest"}]}),
        "tinychat:8000/": 500,
        "tinyllm:8000/": 200,
    }
    async with _mock_client(routes) as http:
        probe = AvailabilityProbe(http_client=http)
        try:
            snapshot = await probe.probe_all(_config())
        finally:
            probe.close()

    assert snapshot.as_flags() == {
        ProviderKind.OLLAMA: True,
        ProviderKind.TINYCHAT: False,
        ProviderKind.TINYLLM: True,
        ProviderKind.OPENWEBUI: False,
        ProviderKind.MLX: False,
    }
    assert snapshot.models(ProviderKind.OLLAMA) == ("mistral:latest",)
    assert snapshot.status(ProviderKind.TINYCHAT).error == "HTTP 500"
    assert "ConnectError" in (snapshot.status(ProviderKind.OPENWEBUI).error or "")
    assert snapshot.status(ProviderKind.MLX).error


@pytest.mark.asyncio
async def test_openwebui_falls_back_to_alternate_port() -> None:
    routes: Dict[str, Route] = {"localhost:3000/": 200}
    async with _mock_client(routes) as http:
        probe = AvailabilityProbe(http_client=http, kinds=[ProviderKind.OPENWEBUI])
        try:
            snapshot = await probe.probe_all(_config())
        finally:
            probe.close()

    status = snapshot.status(ProviderKind.OPENWEBUI)
    assert status.available
    assert status.endpoint == "http://localhost:3000"


@pytest.mark.asyncio
async def test_unparseable_model_list_does_not_affect_availability() -> None:
    routes: Dict[str, Route] = {"ollama:11434/api/tags": lambda r: httpx.Response(200, content=b"<html>oops</html>")}
    async with _mock_client(routes) as http:
        probe = AvailabilityProbe(http_client=http, kinds=[ProviderKind.OLLAMA])
        try:
            snapshot = await probe.probe_all(_config())
        finally:
            probe.close()

    assert snapshot[ProviderKind.OLLAMA] is True
    assert snapshot.models(ProviderKind.OLLAMA) == ()


@pytest.mark.asyncio
async def test_slow_provider_times_out_without_holding_back_others() -> None:
    async def slow(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200)

    routes: Dict[str, Route] = {"ollama:11434/api/tags": 200, "tinychat:8000/": slow}
    async with _mock_client(routes) as http:
        probe = AvailabilityProbe(http_client=http, kinds=[ProviderKind.OLLAMA, ProviderKind.TINYCHAT])
        try:
            t0 = time.perf_counter()
            snapshot = await probe.probe_all(_config(probe_timeout_s=0.05))
            elapsed = time.perf_counter() - t0
        finally:
            probe.close()

    assert elapsed < 3.0
    assert snapshot[ProviderKind.OLLAMA] is True
    assert snapshot[ProviderKind.TINYCHAT] is False
    assert snapshot.status(ProviderKind.TINYCHAT).error == "timeout"


@pytest.mark.asyncio
async def test_unexpected_exception_is_absorbed() -> None:
    def boom(request: httpx.Request) -> httpx.Response:
        raise RuntimeError("kaboom")

    async with _mock_client({"tinyllm:8000/": boom}) as http:
        probe = AvailabilityProbe(http_client=http, kinds=[ProviderKind.TINYLLM])
        try:
            snapshot = await probe.probe_all(_config())
        finally:
            probe.close()

    assert snapshot[ProviderKind.TINYLLM] is False
    assert "kaboom" in (snapshot.status(ProviderKind.TINYLLM).error or "")


@pytest.mark.asyncio
async def test_subprocess_probe_uses_exit_status(tmp_path: Path, make_interpreter) -> None:
    ok = make_interpreter("exit 0")
    missing = make_interpreter("echo \"ModuleNotFoundError: No module named 'mlx'\" >&2\nexit 1")

    async with _mock_client({}) as http:
        probe = AvailabilityProbe(http_client=http, kinds=[ProviderKind.MLX])
        try:
            up = await probe.probe_all(_config(endpoints={ProviderKind.MLX: str(ok)}))
            down = await probe.probe_all(_config(endpoints={ProviderKind.MLX: str(missing)}))
        finally:
            probe.close()

    assert up[ProviderKind.MLX] is True
    assert up.status(ProviderKind.MLX).endpoint == str(ok)
    assert down[ProviderKind.MLX] is False
    assert down.status(ProviderKind.MLX).error == "ModuleNotFoundError: No module named 'mlx'"
    calls = (tmp_path / "interpreter_calls.log").read_text(encoding="utf-8")
    assert "import mlx.core" in calls
