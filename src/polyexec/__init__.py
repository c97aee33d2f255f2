"""Polyglot code execution service package.

This package runs untrusted snippets in several languages under a
wall-clock budget and reports normalised results over HTTP and a streaming
WebSocket channel.  It is designed to run as a single-process microservice
behind a reverse proxy.

The top-level modules include:

* ``config`` - configuration handling for environment variables.
* ``models`` - Pydantic models defining request and response schemas.
* ``errors`` - exceptions mapped to HTTP status codes and error frames.
* ``executor`` - language-specific execution backends.
* ``scratch`` - per-execution scratch directories and compiler artifacts.
* ``ledger`` - bounded execution history and aggregate counters.
* ``ratelimit`` - sliding-window admission control.
* ``coordinator`` - validation, dispatch and result normalisation.
* ``api`` - FastAPI application exposing HTTP and WebSocket endpoints.
"""

__version__ = "0.1.0"
