"""Configuration loader.

The execution service reads its configuration from environment variables so
that the same image can run under docker-compose, a process manager or a
plain ``python -m polyexec.api``.  Reasonable defaults are provided so that local
development works out of the box.

Environment variables:

``POLYEXEC_ALLOWED_LANGS``
    Comma-separated list of languages permitted for execution.  Defaults to
    every supported language (``sandbox,javascript,python,c,cpp,bash``).

``POLYEXEC_SCRATCH_PATH``
    Base directory under which each execution gets its own scratch
    directory.  Defaults to ``polyexec`` inside the system temp directory.

``POLYEXEC_DEFAULT_TIMEOUT_MS``
    Wall-clock budget applied when a request does not carry ``timeoutMs``.
    Default is 30000.

``POLYEXEC_MAX_EXECUTION_SECONDS``
    Upper bound for any requested timeout.  Default is 60.

``POLYEXEC_MAX_OUTPUT_KB``
    Maximum amount of stdout (and, separately, stderr) kept per execution.
    Default is 256.

``POLYEXEC_HISTORY_SIZE``
    Number of executions kept in the in-memory history.  Default is 100.

``POLYEXEC_RATE_LIMIT_PER_MINUTE``
    Executions admitted per key in any 60 second window.  ``0`` disables the
    limiter.  Default is 30.

``POLYEXEC_RATE_LIMIT_SCOPE``
    ``client`` keys the limiter by remote address, ``global`` shares one
    window between all callers.  Default is ``client``.

``POLYEXEC_PYTHON_BIN``, ``POLYEXEC_NODE_BIN``, ``POLYEXEC_BASH_BIN``,
``POLYEXEC_CC``, ``POLYEXEC_CXX``
    Toolchain commands.  Defaults are ``python3``, ``node``, ``bash``,
    ``gcc`` and ``g++``.

``POLYEXEC_LOG_LEVEL``
    Level name for the ``polyexec`` logger.  Default is ``INFO``.

``PORT``
    The port on which the API server listens.  Defaults to 8080.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from typing import List

from .models import Language


RATE_LIMIT_SCOPES = {"client", "global"}


def _int_var(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    try:
        return int(val)
    except ValueError:
        raise ValueError(f"Invalid integer for {name}: {val}")


def _default_scratch_path() -> str:
    return os.path.join(tempfile.gettempdir(), "polyexec")


@dataclass
class Config:
    """Centralised configuration object."""

    allowed_langs: List[str] = field(default_factory=lambda: [lang.value for lang in Language])
    scratch_path: str = field(default_factory=_default_scratch_path)
    default_timeout_ms: int = 30000
    max_execution_seconds: int = 60
    max_output_kb: int = 256
    history_size: int = 100
    rate_limit_per_minute: int = 30
    rate_limit_scope: str = "client"
    python_bin: str = "python3"
    node_bin: str = "node"
    bash_bin: str = "bash"
    cc: str = "gcc"
    cxx: str = "g++"
    log_level: str = "INFO"
    port: int = 8080

    @classmethod
    def load(cls) -> "Config":
        allowed_langs_env = os.getenv("POLYEXEC_ALLOWED_LANGS")
        if allowed_langs_env:
            allowed_langs = [lang.strip().lower() for lang in allowed_langs_env.split(",") if lang.strip()]
            unknown = [lang for lang in allowed_langs if Language.resolve(lang) is None]
            if unknown:
                raise ValueError(f"Invalid POLYEXEC_ALLOWED_LANGS entries: {', '.join(unknown)}")
            allowed_langs = [Language.resolve(lang).value for lang in allowed_langs]
        else:
            allowed_langs = [lang.value for lang in Language]

        rate_limit_scope = os.getenv("POLYEXEC_RATE_LIMIT_SCOPE", "client").strip().lower()
        if rate_limit_scope not in RATE_LIMIT_SCOPES:
            raise ValueError(
                f"Invalid POLYEXEC_RATE_LIMIT_SCOPE: {rate_limit_scope}. Use 'client' or 'global'."
            )

        default_timeout_ms = _int_var("POLYEXEC_DEFAULT_TIMEOUT_MS", 30000)
        if default_timeout_ms <= 0:
            raise ValueError("POLYEXEC_DEFAULT_TIMEOUT_MS must be positive")
        history_size = _int_var("POLYEXEC_HISTORY_SIZE", 100)
        if history_size <= 0:
            raise ValueError("POLYEXEC_HISTORY_SIZE must be positive")

        return cls(
            allowed_langs=allowed_langs,
            scratch_path=os.getenv("POLYEXEC_SCRATCH_PATH", _default_scratch_path()),
            default_timeout_ms=default_timeout_ms,
            max_execution_seconds=_int_var("POLYEXEC_MAX_EXECUTION_SECONDS", 60),
            max_output_kb=_int_var("POLYEXEC_MAX_OUTPUT_KB", 256),
            history_size=history_size,
            rate_limit_per_minute=_int_var("POLYEXEC_RATE_LIMIT_PER_MINUTE", 30),
            rate_limit_scope=rate_limit_scope,
            python_bin=os.getenv("POLYEXEC_PYTHON_BIN", "python3"),
            node_bin=os.getenv("POLYEXEC_NODE_BIN", "node"),
            bash_bin=os.getenv("POLYEXEC_BASH_BIN", "bash"),
            cc=os.getenv("POLYEXEC_CC", "gcc"),
            cxx=os.getenv("POLYEXEC_CXX", "g++"),
            log_level=os.getenv("POLYEXEC_LOG_LEVEL", "INFO").upper(),
            port=_int_var("PORT", 8080),
        )

    @classmethod
    def from_env(cls) -> "Config":
        """
        Alternate constructor used by the API to load configuration.

        This wrapper calls :meth:`load` to construct the configuration.
        It exists to provide a more intuitive name when consumed in
        application code.
        """
        return cls.load()

    @property
    def max_timeout_ms(self) -> int:
        return self.max_execution_seconds * 1000
