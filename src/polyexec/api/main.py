"""
FastAPI application for the code execution service.

This module configures the FastAPI application and registers the HTTP
routes for one-shot execution, execution history and metrics, plus the
WebSocket channel that streams execution output as it is produced.

The application is built by :func:`create_app`, which wires a single
:class:`~polyexec.coordinator.ExecutionCoordinator` (and through it the
ledger, rate limiter and scratch space) into ``app.state``.  A module level
``app`` built from the environment is provided for ``uvicorn``.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import Config
from ..coordinator import ExecutionCoordinator, ExecutionRequest
from ..errors import ExecutionError, RateLimitExceeded
from ..models import (
    ExecuteRequest,
    ExecuteResponse,
    HistoryEntry,
    HistoryResponse,
    LanguageInfo,
    MetricsResponse,
    StatusResponse,
)


logger = logging.getLogger("polyexec")


def configure_logging(level: str = "INFO") -> None:
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter("[polyexec] %(levelname)s - %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))


def _client_host(connection: Any) -> Optional[str]:
    return getattr(connection.client, "host", None)


def parse_channel_message(raw: str) -> ExecutionRequest:
    """Turn one inbound channel frame into a request, or raise ``ValueError``."""
    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        raise ValueError("Malformed message: expected a JSON object")
    if not isinstance(message, dict):
        raise ValueError("Malformed message: expected a JSON object")
    if message.get("type") != "execute":
        raise ValueError(f"Unsupported message type: {message.get('type')!r}")
    timeout_ms = message.get("timeoutMs")
    if timeout_ms is not None and (isinstance(timeout_ms, bool) or not isinstance(timeout_ms, int)):
        raise ValueError("timeoutMs must be an integer")
    code = message.get("code")
    language = message.get("language")
    return ExecutionRequest(
        code=code if isinstance(code, str) else None,
        language=language if isinstance(language, str) else None,
        timeout_ms=timeout_ms,
    )


def create_app(config: Optional[Config] = None, coordinator: Optional[ExecutionCoordinator] = None) -> FastAPI:
    """Build the application around one coordinator."""
    config = config or (coordinator.config if coordinator is not None else Config.from_env())
    configure_logging(config.log_level)

    logger.info(
        "Loaded config: scratch_path=%s, allowed_langs=%s, max_exec=%ss, rate_limit=%s/min (%s)",
        config.scratch_path,
        config.allowed_langs,
        config.max_execution_seconds,
        config.rate_limit_per_minute,
        config.rate_limit_scope,
    )

    app = FastAPI(title="Polyglot Code Execution Service", version=__version__)
    app.state.config = config
    app.state.coordinator = coordinator or ExecutionCoordinator(config)
    app.state.started_at = time.monotonic()

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log every request and the status code it produced."""
        method = request.method
        path = request.url.path
        logger.info("Incoming request: %s %s from %s", method, path, _client_host(request) or "unknown")
        response = await call_next(request)
        logger.info("Response: %s %s -> %s", method, path, response.status_code)
        return response

    @app.exception_handler(ExecutionError)
    async def execution_error_handler(request: Request, exc: ExecutionError) -> JSONResponse:
        headers = None
        if isinstance(exc, RateLimitExceeded):
            logger.warning("Rate limit hit for %s", _client_host(request))
            headers = {"Retry-After": str(max(1, int(exc.retry_after + 0.999)))}
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "Invalid request body",
                "details": jsonable_encoder(exc.errors()),
            },
        )

    @app.get("/health")
    async def health() -> Dict[str, str]:
        """Return a simple health check response."""
        return {"status": "ok"}

    @app.get("/status", response_model=StatusResponse)
    async def status(request: Request) -> StatusResponse:
        coordinator: ExecutionCoordinator = request.app.state.coordinator
        return StatusResponse(
            status="online",
            version=__version__,
            uptime_seconds=round(time.monotonic() - request.app.state.started_at, 3),
            languages=coordinator.supported_languages,
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        )

    @app.post("/execute", response_model=ExecuteResponse)
    async def execute(req: ExecuteRequest, request: Request) -> ExecuteResponse:
        """Run one snippet and return its result.

        The status code is 200 whenever the code was dispatched, even if the
        program itself failed; ``success`` carries the outcome.
        """
        coordinator: ExecutionCoordinator = request.app.state.coordinator
        logger.info("[/execute] Received %s request (%s chars)", req.language, len(req.code or ""))
        try:
            return await coordinator.execute(
                ExecutionRequest(code=req.code, language=req.language, timeout_ms=req.timeout_ms),
                client=_client_host(request),
            )
        except ExecutionError:
            raise
        except Exception as exc:
            logger.exception("[/execute] Unhandled error during execution: %s", exc)
            raise HTTPException(status_code=500, detail="Execution error")

    @app.get("/execute/languages", response_model=List[LanguageInfo])
    async def languages(request: Request) -> List[LanguageInfo]:
        """List enabled languages and whether their toolchain is installed."""
        return request.app.state.coordinator.languages()

    @app.get("/execute/history", response_model=HistoryResponse)
    async def history(request: Request, limit: int = Query(default=50, ge=0)) -> HistoryResponse:
        ledger = request.app.state.coordinator.ledger
        return HistoryResponse(history=ledger.recent(limit), total=len(ledger))

    @app.get("/execute/history/{execution_id}", response_model=HistoryEntry)
    async def history_entry(execution_id: str, request: Request) -> HistoryEntry:
        entry = request.app.state.coordinator.ledger.get(execution_id)
        if entry is None:
            raise HTTPException(status_code=404, detail="Execution not found")
        return entry

    @app.delete("/execute/history/{execution_id}")
    async def delete_history_entry(execution_id: str, request: Request) -> Dict[str, bool]:
        request.app.state.coordinator.ledger.discard(execution_id)
        return {"success": True}

    @app.delete("/execute/history")
    async def clear_history(request: Request) -> Dict[str, Any]:
        request.app.state.coordinator.ledger.clear()
        logger.info("Execution history cleared")
        return {"success": True, "message": "Execution history cleared"}

    @app.get("/execute/metrics", response_model=MetricsResponse)
    async def metrics(request: Request) -> MetricsResponse:
        snapshot = request.app.state.coordinator.ledger.snapshot()
        return MetricsResponse(
            executions=snapshot.executions,
            errors=snapshot.errors,
            total_execution_time_ms=snapshot.total_execution_time_ms,
            average_execution_time_ms=snapshot.average_execution_time_ms,
            by_language=snapshot.by_language,
        )

    @app.websocket("/execute/ws")
    async def execute_channel(websocket: WebSocket) -> None:
        """Stream executions over a long-lived connection.

        Requests are handled one at a time; a request sent while another is
        running waits until the previous one has sent its terminal frame.
        Closing the connection does not stop a running execution.
        """
        await websocket.accept()
        coordinator: ExecutionCoordinator = websocket.app.state.coordinator
        client = _client_host(websocket)
        logger.info("Channel opened from %s", client or "unknown")
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = (message.get("bytes") or b"").decode("utf-8", errors="replace")
                try:
                    req = parse_channel_message(raw)
                except ValueError as exc:
                    await websocket.send_json({"type": "error", "error": str(exc)})
                    continue

                events = coordinator.stream(req, client=client)
                try:
                    async for event in events:
                        await websocket.send_json(event.to_frame())
                finally:
                    await events.aclose()
        except WebSocketDisconnect:
            pass
        except Exception as exc:
            logger.error("Channel error: %s", exc, exc_info=True)
        logger.info("Channel closed for %s", client or "unknown")

    return app


app = create_app()
