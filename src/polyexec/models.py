"""Pydantic models for request and response bodies.

These models express the structure of the HTTP API and the WebSocket
frames.  Field names are snake_case in Python and camelCase on the wire
(``timeoutMs``, ``executionId``...), matching what browser clients of the
service already send.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Language(str, Enum):
    """Languages the service knows how to run."""

    SANDBOX = "sandbox"
    JAVASCRIPT = "javascript"
    PYTHON = "python"
    C = "c"
    CPP = "cpp"
    BASH = "bash"

    @classmethod
    def resolve(cls, value: Optional[str]) -> Optional["Language"]:
        """Map a client supplied identifier (or alias) to a language."""
        if not value:
            return None
        key = value.strip().lower()
        key = _ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            return None


_ALIASES: Dict[str, str] = {
    "js": "javascript",
    "node": "javascript",
    "py": "python",
    "python3": "python",
    "c++": "cpp",
    "sh": "bash",
}


class WireModel(BaseModel):
    """Base model serialising to camelCase while accepting either spelling."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExecuteRequest(WireModel):
    """Request body for a one-shot execution.

    ``code`` and ``language`` are optional at the schema level so that a
    missing field is reported by the coordinator as a 400 with a readable
    message instead of a generic schema error.
    """

    code: Optional[str] = Field(default=None, description="Source code to execute.")
    language: Optional[str] = Field(default=None, description="Language identifier.")
    timeout_ms: Optional[int] = Field(
        default=None, description="Wall-clock budget in milliseconds."
    )


class ExecuteResponse(WireModel):
    """Normalised result of one execution."""

    execution_id: str
    success: bool
    output: str
    error: Optional[str] = None
    execution_time_ms: int
    language: str


class HistoryEntry(ExecuteResponse):
    """An execution result together with its source and completion time."""

    code: str
    timestamp: str


class HistoryResponse(WireModel):
    history: List[HistoryEntry] = Field(default_factory=list)
    total: int


class MetricsResponse(WireModel):
    executions: int
    errors: int
    total_execution_time_ms: int
    average_execution_time_ms: float
    by_language: Dict[str, int] = Field(default_factory=dict)


class LanguageInfo(WireModel):
    """Discovery record for one enabled language."""

    language: str
    backend: str
    command: Optional[str] = None
    available: bool


class StatusResponse(WireModel):
    status: str
    version: str
    uptime_seconds: float
    languages: List[str]
    timestamp: str
