"""
Base interfaces and dataclasses for code execution backends.

All concrete executors inherit from :class:`CodeExecutor` and implement the
:meth:`execute` coroutine.  Executors run one snippet of untrusted code and
return an :class:`ExecutionOutcome` describing what happened.  While the
code runs, every chunk of output is also pushed to an :data:`OutputSink`
so that streaming clients can see it before the run completes.

The only resource bound enforced here is wall-clock time.  Subprocesses are
started in their own process group and the whole group is killed when the
budget runs out, so shells that fork helpers do not leave orphans behind.
"""

from __future__ import annotations

import abc
import asyncio
import codecs
import logging
import os
import shutil
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from ..errors import SpawnError


logger = logging.getLogger("polyexec.executor")

#: Callback receiving ``(stream, text)`` where ``stream`` is ``"stdout"`` or ``"stderr"``.
OutputSink = Callable[[str, str], None]

READ_CHUNK_SIZE = 4096
TRUNCATION_MARKER = "\n[output truncated]\n"


def discard_output(stream: str, data: str) -> None:
    """Sink used when nobody is listening for incremental output."""


@dataclass
class ExecutionOutcome:
    """Raw result of running a code snippet.

    Attributes
    ----------
    stdout: str
        Standard output captured from the execution.
    stderr: str
        Standard error captured from the execution.  For compile failures
        this holds the compiler diagnostics.
    exit_code: int
        Exit status of the process.  Zero indicates success.
    duration_ms: int
        Wall-clock execution time in milliseconds.
    timed_out: bool
        True when the run was stopped because its budget ran out.
    stage: str
        ``"compile"`` when a compile-then-run execution stopped at the
        compiler, ``"run"`` otherwise.
    """

    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int
    timed_out: bool = False
    stage: str = "run"

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


def timeout_notice(timeout_ms: int) -> str:
    return f"Execution timed out after {timeout_ms} ms"


class _StreamCapture:
    """Decode one pipe incrementally, keep a bounded copy and forward chunks."""

    def __init__(self, name: str, sink: OutputSink, limit: int) -> None:
        self.name = name
        self.sink = sink
        self.limit = limit
        self.parts: List[str] = []
        self.size = 0
        self.truncated = False
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: bytes, final: bool = False) -> None:
        text = self._decoder.decode(chunk, final=final)
        if not text or self.truncated:
            return
        room = self.limit - self.size
        if len(text) > room:
            text = text[:room] + TRUNCATION_MARKER
            self.truncated = True
        self.size += len(text)
        self.parts.append(text)
        self.sink(self.name, text)

    async def pump(self, reader: asyncio.StreamReader) -> None:
        while True:
            chunk = await reader.read(READ_CHUNK_SIZE)
            if not chunk:
                self.feed(b"", final=True)
                return
            self.feed(chunk)

    def text(self) -> str:
        return "".join(self.parts)


class CodeExecutor(abc.ABC):
    """
    Abstract base class defining the interface for code executors.

    Executors run user-supplied code inside a per-execution scratch
    directory and return the captured output.  Subclasses override
    :meth:`execute` to provide concrete implementations.
    """

    #: Kind of backend, reported by the languages endpoint.
    backend = "interpreter"

    def __init__(self, max_output_bytes: int = 256 * 1024) -> None:
        """
        Parameters
        ----------
        max_output_bytes: int, optional
            Maximum number of characters kept per output stream.  Anything
            beyond is drained from the pipe and dropped.
        """
        self.max_output_bytes = max_output_bytes

    @property
    def command(self) -> Optional[str]:
        """Executable this backend depends on, if any."""
        return None

    def available(self) -> bool:
        command = self.command
        return command is None or shutil.which(command) is not None

    @abc.abstractmethod
    async def execute(
        self,
        workdir: Path,
        code: str,
        timeout_ms: int,
        sink: OutputSink = discard_output,
    ) -> ExecutionOutcome:
        """Run the provided code snippet.

        Parameters
        ----------
        workdir: Path
            Scratch directory owned by this execution.  Subprocesses use it
            as their working directory.
        code: str
            The user supplied code to run.
        timeout_ms: int
            Wall-clock budget for the whole execution.
        sink: OutputSink
            Receives output chunks as they are produced.

        Returns
        -------
        ExecutionOutcome
            Captures stdout, stderr, exit status and duration.

        Raises
        ------
        SpawnError
            If the interpreter or compiler cannot be started.
        """
        raise NotImplementedError

    async def _run_subprocess(
        self,
        args: list[str],
        workdir: Path,
        timeout_ms: int,
        sink: OutputSink = discard_output,
        stdin_data: Optional[str] = None,
    ) -> ExecutionOutcome:
        """
        Helper to invoke a subprocess under a wall-clock budget.

        stdout and stderr are read concurrently as they are produced and
        forwarded to ``sink``.  If the process has not exited within
        ``timeout_ms`` its process group is killed and reaped, and the
        outcome is marked as timed out.
        """
        start_time = time.perf_counter()
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(workdir),
                stdin=asyncio.subprocess.PIPE if stdin_data is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as exc:
            raise SpawnError(args[0], exc.strerror or str(exc)) from exc

        stdout = _StreamCapture("stdout", sink, self.max_output_bytes)
        stderr = _StreamCapture("stderr", sink, self.max_output_bytes)

        async def feed_stdin() -> None:
            if stdin_data is None or process.stdin is None:
                return
            try:
                process.stdin.write(stdin_data.encode("utf-8"))
                await process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                # The program exited without reading all of its input.
                pass
            finally:
                process.stdin.close()

        timed_out = False
        try:
            await asyncio.wait_for(
                asyncio.gather(
                    feed_stdin(),
                    stdout.pump(process.stdout),
                    stderr.pump(process.stderr),
                    process.wait(),
                ),
                timeout=timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            timed_out = True
            logger.warning("Process %s (pid %s) exceeded %s ms; killing", args[0], process.pid, timeout_ms)
            # The leader may have exited while a background child keeps the pipes open.
            self._kill(process)
        finally:
            if process.returncode is None:
                self._kill(process)
                await process.wait()

        duration = int((time.perf_counter() - start_time) * 1000)
        exit_code = process.returncode if process.returncode is not None else -1
        stderr_text = stderr.text()
        if timed_out:
            notice = timeout_notice(timeout_ms)
            sink("stderr", notice)
            stderr_text = (stderr_text + "\n" + notice) if stderr_text else notice
            exit_code = -9
        return ExecutionOutcome(stdout.text(), stderr_text, exit_code, duration, timed_out)

    @staticmethod
    def _kill(process: asyncio.subprocess.Process) -> None:
        try:
            if hasattr(os, "killpg"):
                os.killpg(process.pid, signal.SIGKILL)
            else:
                process.kill()
        except (ProcessLookupError, PermissionError):
            pass
