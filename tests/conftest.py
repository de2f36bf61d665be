"""Shared test fixtures for Pipewright."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from pipewright.core.environment import EnvironmentLocks
from pipewright.core.executors import CallableExecutor
from pipewright.core.orchestrator import Orchestrator
from pipewright.core.promoter import EnvironmentPromoter
from pipewright.core.run_ledger import RunLedger
from pipewright.models.config import PipelineConfig
from pipewright.models.tasks import ParamSpec, PipelineDefinition, TaskDefinition
from pipewright.platform.local import LocalPlatform


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def run_id() -> str:
    """Provide a deterministic test run ID."""
    return "pw-test-run-001"


@pytest.fixture
def pipeline_config(tmp_dir: Path) -> PipelineConfig:
    """Engine configuration rooted in the temp directory."""
    return PipelineConfig(
        ledger_db_path=tmp_dir / "test_ledger.db",
        workspace_dir=tmp_dir / "workspaces",
        max_workers=4,
    )


# ---------------------------------------------------------------------------
# Definition factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_task() -> Callable[..., TaskDefinition]:
    """Factory fixture: build a TaskDefinition.

    ``params`` may be given as plain names; they become required string
    params.
    """

    def _factory(name: str, **overrides: Any) -> TaskDefinition:
        params = overrides.pop("params", [])
        specs = [ParamSpec(name=p) if isinstance(p, str) else p for p in params]
        return TaskDefinition(name=name, params=specs, **overrides)

    return _factory


@pytest.fixture
def make_pipeline() -> Callable[..., PipelineDefinition]:
    """Factory fixture: build a PipelineDefinition from tasks."""

    def _factory(*tasks: TaskDefinition, **overrides: Any) -> PipelineDefinition:
        defaults: dict[str, Any] = {"name": "test-pipeline", "tasks": list(tasks)}
        defaults.update(overrides)
        return PipelineDefinition(**defaults)

    return _factory


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


@pytest.fixture
def callable_executor() -> CallableExecutor:
    """An empty CallableExecutor; tests register handlers by task name."""
    return CallableExecutor()


@pytest.fixture
def orchestrator(
    pipeline_config: PipelineConfig, callable_executor: CallableExecutor, ledger: RunLedger
) -> Orchestrator:
    """An Orchestrator running tasks through ``callable_executor``."""
    return Orchestrator(pipeline_config, callable_executor, ledger=ledger)


# ---------------------------------------------------------------------------
# Platform / promotion
# ---------------------------------------------------------------------------


@pytest.fixture
def platform() -> LocalPlatform:
    """An in-memory LocalPlatform."""
    return LocalPlatform()


@pytest.fixture
def locks() -> EnvironmentLocks:
    return EnvironmentLocks()


@pytest.fixture
def promoter(platform: LocalPlatform, locks: EnvironmentLocks, ledger: RunLedger) -> EnvironmentPromoter:
    """A best-effort, route-preserving promoter over the in-memory platform."""
    return EnvironmentPromoter(platform, platform, locks=locks, ledger=ledger)


@pytest.fixture
def built_in_dev(platform: LocalPlatform) -> Callable[..., str]:
    """Factory fixture: push ``app:revision`` into the ``dev`` namespace."""

    def _factory(application: str = "web", revision: str = "a1b2c3d") -> str:
        digest = "sha256:" + (revision * 10)[:64]
        platform.push("dev", application, revision, digest)
        return digest

    return _factory
