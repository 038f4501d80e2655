"""Probe the local inference backends and print which one would serve calls.

Usage:
    python -m scripts.check_backends
    python -m scripts.check_backends --mode tinyllm --prompt "Say hi"
    python -m scripts.check_backends --test_all
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from backends.registry import REGISTRY, ProviderKind
from config.schema import Mode
from config.store import YamlConfigStore, YamlUsageStore, default_settings_path
from routing.manager import BackendManager
from routing.status import RouterState


def _state_summary(state: RouterState) -> Dict[str, Any]:
    providers: Dict[str, Any] = {}
    for kind in ProviderKind:
        status = state.snapshot.status(kind)
        providers[kind.value] = {
            "name": REGISTRY[kind].display_name,
            "available": status.available,
            "endpoint": status.endpoint or state.config.endpoint_for(kind),
            "latency_ms": status.latency_ms,
            "models": list(status.models),
            "error": status.error,
        }
    return {
        "mode": state.mode.value,
        "active_backend": state.active_backend.value if state.active_backend else None,
        "providers": providers,
    }


async def _run(args: argparse.Namespace) -> int:
    store = YamlConfigStore(args.settings)
    async with BackendManager(store, usage_store=YamlUsageStore(args.settings)) as manager:
        if args.mode:
            await manager.set_mode(Mode(args.mode))
        print(json.dumps(_state_summary(manager.status()), indent=2))

        if args.test_all:
            for kind in manager.available_backends():
                result = await manager.test_connection(kind)
                outcome = f"ok in {result.response_time_s:.2f}s" if result.success else f"failed: {result.error}"
                print(f"{kind.display_name}: {outcome}")

        if args.prompt:
            text = await manager.generate(args.prompt, system_prompt=args.system, max_tokens=args.max_tokens)
            print(text)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv()

    ap = argparse.ArgumentParser(description="Show local LLM backend availability and the resolved active backend")
    ap.add_argument("--settings", default=None, help=f"Settings file (default: {default_settings_path()})")
    ap.add_argument("--mode", choices=[m.value for m in Mode], default=None, help="Persist a new routing mode first")
    ap.add_argument("--prompt", default=None, help="Optional prompt to send through the active backend")
    ap.add_argument("--system", default=None, help="Optional system prompt for --prompt")
    ap.add_argument("--max_tokens", type=int, default=256)
    ap.add_argument("--test_all", action="store_true", help="Run a connection test against every available backend")
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
