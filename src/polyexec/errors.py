"""Exceptions raised by the execution service.

Only conditions that stop an execution from being dispatched, or from
producing a result at all, are exceptions.  Compiler errors, non-zero exits
and timeouts are ordinary unsuccessful results.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class ExecutionError(Exception):
    """Base class for execution service errors."""

    status_code = 500

    def __init__(self, message: str, execution_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.execution_id = execution_id

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": False, "error": self.message}
        if self.execution_id is not None:
            payload["executionId"] = self.execution_id
        return payload


class ValidationError(ExecutionError):
    """The request was rejected before reaching a backend."""

    status_code = 400


class UnsupportedLanguageError(ValidationError):
    def __init__(self, language: Optional[str], supported: List[str]) -> None:
        super().__init__(f"Unsupported language: {language}")
        self.language = language
        self.supported = supported

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["supportedLanguages"] = self.supported
        return payload


class RateLimitExceeded(ExecutionError):
    """Too many executions were requested in the current window."""

    status_code = 429

    def __init__(self, limit: int, retry_after: float) -> None:
        super().__init__(f"Too many requests: max {limit} executions per minute")
        self.limit = limit
        self.retry_after = retry_after


class SpawnError(ExecutionError):
    """An interpreter or compiler could not be started."""

    status_code = 500

    def __init__(self, command: str, reason: str, execution_id: Optional[str] = None) -> None:
        super().__init__(f"Failed to start '{command}': {reason}", execution_id)
        self.command = command
        self.reason = reason
