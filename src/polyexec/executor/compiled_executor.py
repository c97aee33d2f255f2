"""
Executors for ahead-of-time compiled languages.

A compiled execution happens in two phases inside the execution's scratch
directory:

1. The source is written to ``main.<ext>`` and the compiler is invoked
   with a fixed output binary.  The compiler gets at most half of the
   budget.  A non-zero compiler exit ends the execution: the diagnostics
   become the error and the binary is never started.
2. The binary runs with whatever budget the compiler left over.

The source file and the binary are removed on every exit path, including
timeouts and spawn failures.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import List, Optional

from ..scratch import TemporaryArtifact, artifact
from .base import CodeExecutor, ExecutionOutcome, OutputSink, discard_output


logger = logging.getLogger("polyexec.executor")


class CompiledExecutor(CodeExecutor):
    """Compile a single source file, then run the resulting binary."""

    backend = "compiled"
    source_suffix = ".src"

    def __init__(
        self,
        compiler: str,
        flags: Optional[List[str]] = None,
        libs: Optional[List[str]] = None,
        max_output_bytes: int = 256 * 1024,
    ) -> None:
        super().__init__(max_output_bytes)
        self.compiler = compiler
        self.flags = list(flags or [])
        # Libraries go after the source file so the linker resolves them.
        self.libs = list(libs or [])

    @property
    def command(self) -> Optional[str]:
        return self.compiler

    def compile_args(self, pair: TemporaryArtifact) -> List[str]:
        return [
            self.compiler,
            *self.flags,
            str(pair.source_path),
            "-o",
            str(pair.binary_path),
            *self.libs,
        ]

    def run_args(self, pair: TemporaryArtifact) -> List[str]:
        return [str(pair.binary_path)]

    async def execute(
        self,
        workdir: Path,
        code: str,
        timeout_ms: int,
        sink: OutputSink = discard_output,
    ) -> ExecutionOutcome:
        start_time = time.perf_counter()
        with artifact(workdir, "main" + self.source_suffix) as pair:
            pair.source_path.write_text(code, encoding="utf-8")

            compile_budget = max(1, timeout_ms // 2)
            # Compiler chatter is not program output; only forward it if the build fails.
            compiled = await self._run_subprocess(self.compile_args(pair), workdir, compile_budget)
            if not compiled.succeeded:
                diagnostics = compiled.stderr or compiled.stdout or f"Compilation failed with exit code {compiled.exit_code}"
                sink("stderr", diagnostics)
                return ExecutionOutcome(
                    stdout="",
                    stderr=diagnostics,
                    exit_code=compiled.exit_code if compiled.exit_code != 0 else 1,
                    duration_ms=self._elapsed_ms(start_time),
                    timed_out=compiled.timed_out,
                    stage="compile",
                )

            run_budget = max(1, timeout_ms - self._elapsed_ms(start_time))
            logger.debug("Compiled %s in %s ms; running with %s ms left", pair.source_path.name, compiled.duration_ms, run_budget)
            ran = await self._run_subprocess(self.run_args(pair), workdir, run_budget, sink)
            ran.duration_ms = self._elapsed_ms(start_time)
            return ran

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int((time.perf_counter() - start_time) * 1000)


class CExecutor(CompiledExecutor):
    """Compile C with ``gcc`` (or a compatible driver)."""

    source_suffix = ".c"

    def __init__(self, compiler: str = "gcc", max_output_bytes: int = 256 * 1024) -> None:
        super().__init__(compiler, ["-O2", "-std=c11"], ["-lm"], max_output_bytes)


class CppExecutor(CompiledExecutor):
    """Compile C++ with ``g++`` (or a compatible driver)."""

    source_suffix = ".cpp"

    def __init__(self, compiler: str = "g++", max_output_bytes: int = 256 * 1024) -> None:
        super().__init__(compiler, ["-O2", "-std=c++17"], None, max_output_bytes)
