"""
Execution coordinator.

The coordinator sits between the transport layer (HTTP and WebSocket) and
the executors.  For every request it

1. validates the code, the language and the timeout;
2. asks the rate limiter to admit the call;
3. allocates an execution id and a scratch directory named after it;
4. runs the executor for the language, forwarding output chunks;
5. normalises the outcome into an :class:`ExecuteResponse` and records it
   in the ledger.

It holds no per-call state, so any number of executions can be in flight
at once.  Two entry points share the same pipeline: :meth:`execute`
returns the final result, :meth:`stream` yields :class:`ExecutionEvent`
objects as the execution progresses.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Set, Union

from .config import Config
from .errors import ExecutionError, SpawnError, UnsupportedLanguageError, ValidationError
from .executor import (
    BashExecutor,
    CExecutor,
    CodeExecutor,
    CppExecutor,
    ExecutionOutcome,
    JavaScriptExecutor,
    OutputSink,
    PythonExecutor,
    SandboxExecutor,
    discard_output,
)
from .ledger import Ledger
from .models import ExecuteResponse, Language, LanguageInfo
from .ratelimit import SlidingWindowRateLimiter
from .scratch import ScratchSpace


logger = logging.getLogger("polyexec.coordinator")

EMPTY_OUTPUT_PLACEHOLDER = "execution completed"


@dataclass(frozen=True)
class ExecutionRequest:
    code: Optional[str]
    language: Optional[str]
    timeout_ms: Optional[int] = None


@dataclass(frozen=True)
class Started:
    execution_id: str

    def to_frame(self) -> Dict[str, Any]:
        return {"type": "start", "executionId": self.execution_id}


@dataclass(frozen=True)
class OutputChunk:
    stream: str
    data: str

    def to_frame(self) -> Dict[str, Any]:
        return {"type": self.stream, "data": self.data}


@dataclass(frozen=True)
class Completed:
    execution_id: str
    success: bool
    execution_time_ms: int

    def to_frame(self) -> Dict[str, Any]:
        return {
            "type": "complete",
            "success": self.success,
            "executionTimeMs": self.execution_time_ms,
            "executionId": self.execution_id,
        }


@dataclass(frozen=True)
class Failed:
    error: str
    execution_id: Optional[str] = None

    def to_frame(self) -> Dict[str, Any]:
        frame: Dict[str, Any] = {"type": "error", "error": self.error}
        if self.execution_id is not None:
            frame["executionId"] = self.execution_id
        return frame


ExecutionEvent = Union[Started, OutputChunk, Completed, Failed]


def build_executors(config: Config) -> Dict[Language, CodeExecutor]:
    """Create one executor per enabled language."""
    limit = config.max_output_kb * 1024
    factories = {
        Language.SANDBOX: lambda: SandboxExecutor(max_output_bytes=limit),
        Language.JAVASCRIPT: lambda: JavaScriptExecutor(config.node_bin, limit),
        Language.PYTHON: lambda: PythonExecutor(config.python_bin, limit),
        Language.C: lambda: CExecutor(config.cc, limit),
        Language.CPP: lambda: CppExecutor(config.cxx, limit),
        Language.BASH: lambda: BashExecutor(config.bash_bin, limit),
    }
    enabled = {Language(lang) for lang in config.allowed_langs}
    return {lang: factory() for lang, factory in factories.items() if lang in enabled}


class ExecutionCoordinator:
    """Validate, dispatch and record code executions."""

    def __init__(
        self,
        config: Config,
        ledger: Optional[Ledger] = None,
        executors: Optional[Mapping[Language, CodeExecutor]] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        scratch: Optional[ScratchSpace] = None,
    ) -> None:
        self.config = config
        self.ledger = ledger if ledger is not None else Ledger(config.history_size)
        self.executors: Dict[Language, CodeExecutor] = dict(
            executors if executors is not None else build_executors(config)
        )
        self.rate_limiter = rate_limiter if rate_limiter is not None else SlidingWindowRateLimiter(
            config.rate_limit_per_minute, scope=config.rate_limit_scope
        )
        self.scratch = scratch if scratch is not None else ScratchSpace(config.scratch_path)
        # Streams abandoned by their consumer keep running until done.
        self._detached: Set[asyncio.Task] = set()

    @property
    def supported_languages(self) -> List[str]:
        return [lang.value for lang in self.executors]

    def languages(self) -> List[LanguageInfo]:
        return [
            LanguageInfo(
                language=lang.value,
                backend=executor.backend,
                command=executor.command,
                available=executor.available(),
            )
            for lang, executor in self.executors.items()
        ]

    def validate(self, request: ExecutionRequest) -> tuple[Language, int]:
        """Check a request and return its language and effective timeout."""
        if request.code is None or not request.code.strip():
            raise ValidationError("Code is required")
        if not request.language:
            raise UnsupportedLanguageError(request.language, self.supported_languages)
        language = Language.resolve(request.language)
        if language is None or language not in self.executors:
            raise UnsupportedLanguageError(request.language, self.supported_languages)
        timeout_ms = request.timeout_ms if request.timeout_ms is not None else self.config.default_timeout_ms
        if timeout_ms <= 0:
            raise ValidationError("timeoutMs must be a positive integer")
        return language, min(timeout_ms, self.config.max_timeout_ms)

    def _admit(self, request: ExecutionRequest, client: Optional[str]) -> tuple[str, Language, int]:
        language, timeout_ms = self.validate(request)
        self.rate_limiter.acquire(client)
        return str(uuid.uuid4()), language, timeout_ms

    async def execute(self, request: ExecutionRequest, client: Optional[str] = None) -> ExecuteResponse:
        """Run one request to completion and return its normalised result.

        Raises :class:`ValidationError` and :class:`RateLimitExceeded` before
        anything runs, and :class:`SpawnError` if the toolchain could not be
        started.  Failing user code is a normal, unsuccessful result.
        """
        execution_id, language, timeout_ms = self._admit(request, client)
        return await self._run(execution_id, language, request.code, timeout_ms, discard_output)

    async def stream(self, request: ExecutionRequest, client: Optional[str] = None) -> AsyncIterator[ExecutionEvent]:
        """Run one request and yield its progress events.

        The sequence is always ``Started``, any number of ``OutputChunk``,
        then exactly one ``Completed`` or ``Failed``.  Rejected requests yield
        a single ``Failed`` event.
        """
        try:
            execution_id, language, timeout_ms = self._admit(request, client)
        except ExecutionError as exc:
            yield Failed(exc.message)
            return

        queue: asyncio.Queue = asyncio.Queue()

        def sink(stream: str, data: str) -> None:
            # Executors call the sink from the event loop.
            queue.put_nowait(OutputChunk(stream, data))

        # Started before the first yield so a consumer that leaves early does not cancel it.
        task = asyncio.create_task(self._run(execution_id, language, request.code, timeout_ms, sink))
        task.add_done_callback(lambda _: queue.put_nowait(None))
        self._detached.add(task)
        task.add_done_callback(self._detached.discard)

        yield Started(execution_id)

        while True:
            chunk = await queue.get()
            if chunk is None:
                break
            yield chunk

        try:
            result = task.result()
        except ExecutionError as exc:
            yield Failed(exc.message, execution_id)
            return
        except Exception:
            logger.exception("Unexpected error during execution %s", execution_id)
            yield Failed("Execution error", execution_id)
            return
        yield Completed(execution_id, result.success, result.execution_time_ms)

    async def _run(
        self,
        execution_id: str,
        language: Language,
        code: str,
        timeout_ms: int,
        sink: OutputSink,
    ) -> ExecuteResponse:
        executor = self.executors[language]
        logger.info("Execution %s: running %s code (timeout %s ms)", execution_id, language.value, timeout_ms)
        start_time = time.perf_counter()
        try:
            with self.scratch.workspace(execution_id) as workdir:
                outcome = await executor.execute(workdir, code, timeout_ms, sink)
        except SpawnError as exc:
            exc.execution_id = execution_id
            elapsed = int((time.perf_counter() - start_time) * 1000)
            logger.warning("Execution %s: %s", execution_id, exc.message)
            self.ledger.record(
                ExecuteResponse(
                    execution_id=execution_id,
                    success=False,
                    output=EMPTY_OUTPUT_PLACEHOLDER,
                    error=exc.message,
                    execution_time_ms=elapsed,
                    language=language.value,
                ),
                code,
            )
            raise

        result = self._normalise(execution_id, language, outcome, start_time)
        self.ledger.record(result, code)
        if outcome.stage == "compile":
            logger.info("Execution %s: compilation failed after %s ms", execution_id, result.execution_time_ms)
        else:
            logger.info(
                "Execution %s finished: success=%s exit_code=%s timed_out=%s duration_ms=%s",
                execution_id,
                result.success,
                outcome.exit_code,
                outcome.timed_out,
                result.execution_time_ms,
            )
        return result

    @staticmethod
    def _normalise(
        execution_id: str,
        language: Language,
        outcome: ExecutionOutcome,
        start_time: float,
    ) -> ExecuteResponse:
        success = outcome.succeeded
        stderr = outcome.stderr.strip()
        if success:
            error = stderr or None
        else:
            error = stderr or f"Process exited with code {outcome.exit_code}"
        elapsed = max(0, int((time.perf_counter() - start_time) * 1000))
        return ExecuteResponse(
            execution_id=execution_id,
            success=success,
            output=outcome.stdout if outcome.stdout else EMPTY_OUTPUT_PLACEHOLDER,
            error=error,
            execution_time_ms=elapsed,
            language=language.value,
        )
