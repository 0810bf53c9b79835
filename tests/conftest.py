"""Shared pytest fixtures for the session preparation test suite."""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

import pytest

from bstack_session.config import EnvironmentSnapshot, RunnerConfig
from bstack_session.launcher import BrowserStackLauncher
from bstack_session.tools.build_cache import BuildNameCache

FIXED_NOW = datetime(2024, 3, 9, 14, 5, 7)


class FakeTunnelBinding:
    """Callback binding that settles synchronously, like a mocked browserstack-local."""

    def __init__(
        self,
        start_error: Exception | None = None,
        stop_error: Exception | None = None,
        running: bool = True,
        pid: int = 102,
    ) -> None:
        self.pid: int | None = None
        self.start_error = start_error
        self.stop_error = stop_error
        self.running = running
        self._pid_on_start = pid
        self.start_calls: List[Dict[str, Any]] = []
        self.stop_calls = 0

    def start(self, options: Dict[str, Any], callback) -> None:
        self.start_calls.append(options)
        if self.start_error is not None:
            callback(self.start_error)
            return
        self.pid = self._pid_on_start
        callback()

    def stop(self, callback) -> None:
        self.stop_calls += 1
        callback(self.stop_error)

    def is_running(self) -> bool:
        return self.running


@pytest.fixture
def cache_path(tmp_path: Path) -> Path:
    return tmp_path / ".browserstack" / ".build-name-cache.json"


@pytest.fixture
def build_cache(cache_path: Path) -> BuildNameCache:
    return BuildNameCache(cache_path=cache_path)


@pytest.fixture
def local_env() -> EnvironmentSnapshot:
    """Environment with no CI provider and no overrides."""
    return EnvironmentSnapshot()


@pytest.fixture
def binding() -> FakeTunnelBinding:
    return FakeTunnelBinding()


@pytest.fixture
def make_launcher(build_cache, local_env, binding):
    def factory(options=None, capabilities=None, config=None, environment=None, **kwargs) -> BrowserStackLauncher:
        return BrowserStackLauncher(
            options=options or {},
            capabilities=[{}] if capabilities is None else capabilities,
            config=config or RunnerConfig(user="foobaruser", key="12345"),
            environment=environment or local_env,
            build_cache=build_cache,
            binding_factory=lambda: binding,
            **kwargs,
        )

    return factory
