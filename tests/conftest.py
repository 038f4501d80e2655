import os
import stat
import sys
from pathlib import Path
from typing import Callable

import pytest

# Ensure project root is importable so top-level packages like 'backends' resolve
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)


@pytest.fixture
def make_interpreter(tmp_path: Path) -> Callable[[str], Path]:
    """Create an executable shell script that stands in for a Python interpreter.

    The script appends every argument list it is invoked with to
    `<tmp_path>/interpreter_calls.log` before running `body`.
    """
    if sys.platform == "win32":
        pytest.skip("fake interpreters are POSIX shell scripts")
    counter = {"n": 0}

    def _make(body: str) -> Path:
        counter["n"] += 1
        path = tmp_path / f"fake_python_{counter['n']}"
        log = tmp_path / "interpreter_calls.log"
        path.write_text(f'#!/bin/sh\necho "$@" >> "{log}"\n{body}\n', encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make
