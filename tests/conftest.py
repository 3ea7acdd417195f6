"""Shared fixtures: fake agent CLIs and deterministic clocks."""

from __future__ import annotations

import textwrap
from collections.abc import Callable
from pathlib import Path

import pytest


class FakeClock:
    """Monotonic clock whose time only moves when a test advances it."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


ScriptFactory = Callable[[str, str], Path]


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def write_script(tmp_path: Path) -> ScriptFactory:
    """Write an executable ``/bin/sh`` script into ``tmp_path/bin`` and return its path."""

    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)

    def _write(name: str, body: str) -> Path:
        path = bin_dir / name
        path.write_text("#!/bin/sh\n" + textwrap.dedent(body).lstrip("\n"), encoding="utf-8")
        path.chmod(0o755)
        return path

    return _write
