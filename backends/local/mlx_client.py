"""MLX inference by spawning a Python interpreter on a generated script.

Each generation writes a self-contained script (prompt, sampling temperature
and token budget baked in) to a uniquely named file, runs the configured
interpreter against it and reads the completion from standard output. MLX
offers no embeddings through this path.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from typing import Optional

from backends.errors import ExecutionFailedError, ScriptNotConfiguredError, UnsupportedOperationError
from backends.interfaces import GenerationRequest
from backends.local.process_worker import ProcessWorker
from backends.registry import REGISTRY, ProviderKind

logger = logging.getLogger(__name__)

_INFO = REGISTRY[ProviderKind.MLX]

MLX_IMPORT_CHECK = "import mlx.core as mx; print('OK')"

_SCRIPT_TEMPLATE = """\
import json
import sys

try:
    from mlx_lm import generate, load
    from mlx_lm.sample_utils import make_sampler

    prompt = {prompt!r}

    model, tokenizer = load({model!r})

    response = generate(
        model,
        tokenizer,
        prompt=prompt,
        max_tokens={max_tokens},
        sampler=make_sampler(temp={temperature!r}),
        verbose=False,
    )

    print(response)
except Exception as e:
    print(json.dumps({{"error": str(e)}}), file=sys.stderr)
    sys.exit(1)
"""


def build_generation_script(request: GenerationRequest, model: str) -> str:
    """Render the standalone MLX script for one request.

    Values are embedded as Python literals so prompt text cannot break out of
    the string it is assigned to.
    """
    return _SCRIPT_TEMPLATE.format(
        prompt=request.combined_prompt(),
        model=model,
        max_tokens=int(request.max_tokens),
        temperature=float(request.temperature),
    )


class MLXClient:
    kind = ProviderKind.MLX

    def __init__(
        self,
        python_path: str = _INFO.default_endpoint,
        *,
        script_dir: str = "",
        model: Optional[str] = None,
        worker: Optional[ProcessWorker] = None,
    ) -> None:
        self.python_path = python_path
        self.script_dir = (script_dir or "").strip()
        self.model = model or _INFO.default_model or ""
        self._owns_worker = worker is None
        self._worker = worker or ProcessWorker(max_workers=1)

    def _write_script(self, script: str) -> str:
        os.makedirs(self.script_dir, exist_ok=True)
        path = os.path.join(self.script_dir, f"mlx_generate_{uuid.uuid4().hex}.py")
        with open(path, "w", encoding="utf-8") as f:
            f.write(script)
        return path

    @staticmethod
    def _remove_script(path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass

    async def generate(self, request: GenerationRequest) -> str:
        if not self.script_dir:
            raise ScriptNotConfiguredError()

        loop = asyncio.get_running_loop()
        script = build_generation_script(request, self.model)
        script_path = await loop.run_in_executor(None, self._write_script, script)
        try:
            # Generation waits for the child to exit; only liveness checks are time-boxed.
            proc = await self._worker.run([self.python_path, script_path], timeout=None)
        finally:
            await loop.run_in_executor(None, self._remove_script, script_path)

        if proc.returncode != 0:
            logger.warning("MLX script exited with status %s", proc.returncode)
            raise ExecutionFailedError(proc.stderr or "", returncode=proc.returncode)
        if proc.stderr:
            logger.debug("MLX stderr: %s", proc.stderr.strip()[:500])
        return (proc.stdout or "").strip()

    async def embed(self, text: str) -> list[float]:
        raise UnsupportedOperationError()

    def close(self) -> None:
        if self._owns_worker:
            self._worker.close()


__all__ = ["MLXClient", "MLX_IMPORT_CHECK", "build_generation_script"]
