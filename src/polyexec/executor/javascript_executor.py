"""
Executor for running JavaScript with Node.js.

The code is passed on the command line with ``node -e``.  Very large
programs may hit the platform's argument length limit; those fail to spawn
and are reported as a spawn error.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .base import CodeExecutor, ExecutionOutcome, OutputSink, discard_output


class JavaScriptExecutor(CodeExecutor):
    """Execute JavaScript snippets with the ``node`` binary."""

    def __init__(self, node: str = "node", max_output_bytes: int = 256 * 1024) -> None:
        super().__init__(max_output_bytes)
        self.node = node

    @property
    def command(self) -> Optional[str]:
        return self.node

    async def execute(
        self,
        workdir: Path,
        code: str,
        timeout_ms: int,
        sink: OutputSink = discard_output,
    ) -> ExecutionOutcome:
        return await self._run_subprocess([self.node, "-e", code], workdir, timeout_ms, sink)
