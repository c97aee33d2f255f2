"""
Executor for running Bash scripts.

The script is piped to ``bash -s`` on standard input, so nothing is written
to disk.  Commands started by the script share its process group and are
killed with it when the budget runs out.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .base import CodeExecutor, ExecutionOutcome, OutputSink, discard_output


class BashExecutor(CodeExecutor):
    """Execute Bash scripts in the execution's scratch directory."""

    def __init__(self, shell: str = "bash", max_output_bytes: int = 256 * 1024) -> None:
        super().__init__(max_output_bytes)
        self.shell = shell

    @property
    def command(self) -> Optional[str]:
        return self.shell

    async def execute(
        self,
        workdir: Path,
        code: str,
        timeout_ms: int,
        sink: OutputSink = discard_output,
    ) -> ExecutionOutcome:
        content = code if code.endswith("\n") else code + "\n"
        cmd = [self.shell, "-s"]
        return await self._run_subprocess(cmd, workdir, timeout_ms, sink, stdin_data=content)
