"""Shared fixtures: an isolated config, a coordinator, a TestClient and a spawn spy."""

from __future__ import annotations

import asyncio
import shutil
import sys
from pathlib import Path
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient

from polyexec.api.main import create_app
from polyexec.config import Config
from polyexec.coordinator import ExecutionCoordinator


def requires(binary: str):
    """Skip a test when a toolchain binary is not installed."""
    return pytest.mark.skipif(shutil.which(binary) is None, reason=f"{binary} not installed")


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        scratch_path=str(tmp_path / "scratch"),
        python_bin=sys.executable,
        rate_limit_per_minute=0,
        default_timeout_ms=10000,
    )


@pytest.fixture
def coordinator(config: Config) -> ExecutionCoordinator:
    return ExecutionCoordinator(config)


@pytest.fixture
def client(coordinator: ExecutionCoordinator) -> TestClient:
    return TestClient(create_app(coordinator=coordinator))


@pytest.fixture
def spawn_spy(monkeypatch) -> List[List[str]]:
    """Record the argv of every subprocess started through asyncio."""
    calls: List[List[str]] = []
    original = asyncio.create_subprocess_exec

    async def spy(*args: Any, **kwargs: Any):
        calls.append([str(a) for a in args])
        return await original(*args, **kwargs)

    monkeypatch.setattr(asyncio, "create_subprocess_exec", spy)
    return calls


def collect_frames(ws) -> List[Dict[str, Any]]:
    """Read channel frames up to and including the terminal one."""
    frames: List[Dict[str, Any]] = []
    while True:
        frame = ws.receive_json()
        frames.append(frame)
        if frame["type"] in {"complete", "error"}:
            return frames
