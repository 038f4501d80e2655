"""Dedicated execution context for blocking child-process waits.

`subprocess.run` blocks the calling thread until the child exits. Running it
on the event loop would stall every concurrent probe and HTTP call, so all
process work is submitted to a small thread pool and the completed result is
handed back to the awaiting coroutine through its future.
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Sequence

logger = logging.getLogger(__name__)


class ProcessWorker:
    def __init__(self, max_workers: int = 2, *, thread_name_prefix: str = "llm-router-proc") -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=thread_name_prefix)
        self._closed = False

    @staticmethod
    def _run_blocking(argv: Sequence[str], timeout: Optional[float]) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            list(argv),
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )

    async def run(self, argv: Sequence[str], *, timeout: Optional[float] = None) -> subprocess.CompletedProcess[str]:
        """Run `argv` to completion off the event loop and return the finished process.

        Raises OSError when the executable cannot be started and
        subprocess.TimeoutExpired when `timeout` elapses (the child is killed).
        """
        if self._closed:
            raise RuntimeError("ProcessWorker is closed")
        loop = asyncio.get_running_loop()
        logger.debug("Spawning %s", argv[0] if argv else "<empty argv>")
        return await loop.run_in_executor(self._executor, self._run_blocking, tuple(argv), timeout)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._executor.shutdown(wait=False)


__all__ = ["ProcessWorker"]
