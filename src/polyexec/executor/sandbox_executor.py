"""
Executor for the ``sandbox`` language.

Code for the ``sandbox`` language is a restricted dialect of Python.  It is
evaluated by :mod:`polyexec.executor.sandbox_worker` in a separate
interpreter process started with ``-I`` (isolated mode), so a snippet that
spins inside a single C call holds its own interpreter, never the server's.
The payload travels on stdin as JSON; output streams back over the pipes
like any other interpreter, and the process group is killed when the budget
runs out.

This is a convenience for small snippets, not an isolation boundary.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Iterable, Optional

from . import sandbox_worker
from .base import CodeExecutor, ExecutionOutcome, OutputSink, discard_output


def _worker_path() -> Path:
    return Path(sandbox_worker.__file__).resolve()


class SandboxExecutor(CodeExecutor):
    """Evaluate restricted Python in a short-lived worker interpreter."""

    backend = "sandbox"

    def __init__(
        self,
        max_output_bytes: int = 256 * 1024,
        allowed_modules: Optional[Iterable[str]] = None,
        interpreter: str = sys.executable,
    ) -> None:
        super().__init__(max_output_bytes)
        self.allowed_modules = (
            frozenset(allowed_modules) if allowed_modules is not None else sandbox_worker.DEFAULT_ALLOWED_MODULES
        )
        self.interpreter = interpreter

    @property
    def command(self) -> Optional[str]:
        return self.interpreter

    async def execute(
        self,
        workdir: Path,
        code: str,
        timeout_ms: int,
        sink: OutputSink = discard_output,
    ) -> ExecutionOutcome:
        payload = json.dumps({"code": code, "allowed_modules": sorted(self.allowed_modules)})
        cmd = [self.interpreter, "-I", "-u", str(_worker_path())]
        return await self._run_subprocess(cmd, workdir, timeout_ms, sink, stdin_data=payload)
