"""
Executor for running Python code snippets.

The Python executor feeds the provided code to the system interpreter on
standard input (``python3 -u -``).  The interpreter runs unbuffered so that
output reaches streaming clients line by line instead of at exit.

This executor assumes that the host image includes the ``python3`` binary
and any third-party libraries users may import.  Users should not be
allowed to install arbitrary packages at runtime.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .base import CodeExecutor, ExecutionOutcome, OutputSink, discard_output


class PythonExecutor(CodeExecutor):
    """Execute Python code with the system interpreter."""

    def __init__(self, interpreter: str = "python3", max_output_bytes: int = 256 * 1024) -> None:
        super().__init__(max_output_bytes)
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
        cmd = [self.interpreter, "-u", "-"]
        return await self._run_subprocess(cmd, workdir, timeout_ms, sink, stdin_data=code)
