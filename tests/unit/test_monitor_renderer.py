"""Unit tests for the RunRenderer.

Rich output is rendered to a plain-text console and checked for content.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from pipewright.models.platform import Deployment, EnvironmentResources, Route, Service
from pipewright.models.promotion import PromotionAction, PromotionRecord, PromotionRequest
from pipewright.models.runs import RunState, TaskState
from pipewright.monitor.projection import RunSnapshot, TaskStatus
from pipewright.monitor.renderer import _RUN_LABELS, _STATE_LABELS, RunRenderer

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_snapshot(chain_valid: bool = True, run_state: RunState | None = RunState.FAILED) -> RunSnapshot:
    return RunSnapshot(
        run_id="pw-test-run-001",
        pipeline_name="build-and-deploy",
        run_state=run_state,
        tasks=[
            TaskStatus(
                name="revision", state=TaskState.SUCCEEDED, exit_code=0,
                started_at=T0, finished_at=T0 + timedelta(seconds=1.5),
            ),
            TaskStatus(name="build", state=TaskState.FAILED, exit_code=2, message="step exited non-zero"),
            TaskStatus(name="deploy", state=TaskState.SKIPPED, message="upstream task 'build' failed"),
        ],
        chain_valid=chain_valid,
        last_updated=T0,
    )


def _render(renderable) -> str:
    console = Console(width=160, force_terminal=False)
    with console.capture() as capture:
        console.print(renderable)
    return capture.get()


# ---------------------------------------------------------------------------
# Test: State mappings
# ---------------------------------------------------------------------------


class TestStateMappings:
    def test_all_task_states_have_labels(self):
        for state in TaskState:
            assert state in _STATE_LABELS, f"Missing label for {state}"

    def test_all_run_states_have_labels(self):
        for state in RunState:
            assert state in _RUN_LABELS, f"Missing label for {state}"


# ---------------------------------------------------------------------------
# Test: Render snapshot
# ---------------------------------------------------------------------------


class TestRenderSnapshot:
    def test_returns_panel(self):
        assert isinstance(RunRenderer().render_snapshot(_make_snapshot()), Panel)

    def test_includes_tasks_and_run(self):
        output = _render(RunRenderer().render_snapshot(_make_snapshot()))
        assert "build-and-deploy" in output
        assert "pw-test-run-001" in output
        assert "FAILED" in output
        assert "upstream task 'build' failed" in output
        assert "1.50s" in output
        assert "1/3" in output

    @pytest.mark.parametrize("valid,expected", [(True, "valid"), (False, "BROKEN")])
    def test_chain_status(self, valid, expected):
        assert expected in _render(RunRenderer().render_snapshot(_make_snapshot(chain_valid=valid)))

    def test_unknown_run_state(self):
        output = _render(RunRenderer().render_snapshot(_make_snapshot(run_state=None)))
        assert "unknown" in output


class TestChainVerification:
    def test_prints_valid_and_broken(self):
        console = Console(width=160, force_terminal=False)
        renderer = RunRenderer(console=console)
        with console.capture() as capture:
            renderer.print_chain_verification("r1", True)
            renderer.print_chain_verification("r2", False)
        output = capture.get()
        assert "Hash chain for run r1 is valid." in output
        assert "Hash chain for run r2 is BROKEN!" in output


# ---------------------------------------------------------------------------
# Test: Promotions and resources
# ---------------------------------------------------------------------------


class TestRenderPromotion:
    def _record(self, cleanup_errors: list[str] | None = None) -> PromotionRecord:
        return PromotionRecord(
            request=PromotionRequest(
                application="web", revision="a1b2c3d", source_env="dev", target_env="stage"
            ),
            image="stage/web:a1b2c3d",
            digest="sha256:" + "a" * 64,
            actions=[
                PromotionAction(action="tag", resource="image", name="stage/web:a1b2c3d"),
                PromotionAction(action="keep", resource="route", name="stage/web", detail="web.example"),
            ],
            cleanup_errors=cleanup_errors or [],
            replaced_revision="0000000",
            slot_version=4,
        )

    def test_lists_actions(self):
        output = _render(RunRenderer().render_promotion(self._record()))
        assert "web:a1b2c3d" in output
        assert "dev -> stage" in output
        assert "keep" in output
        assert "Slot version: 4" in output
        assert "Replaced: 0000000" in output

    def test_cleanup_warnings(self):
        panel = RunRenderer().render_promotion(self._record(["could not delete service"]))
        assert panel.border_style == "yellow"
        assert "cleanup warning" in _render(panel)


class TestRenderResources:
    def test_empty(self):
        table = RunRenderer().render_resources(
            EnvironmentResources(application="web", namespace="stage")
        )
        assert isinstance(table, Table)
        assert "nothing deployed" in _render(table)

    def test_populated(self):
        resources = EnvironmentResources(
            application="web",
            namespace="stage",
            deployment=Deployment(
                name="web", namespace="stage", image="stage/web:r1", revision="r1", rollouts=2
            ),
            service=Service(name="web", namespace="stage"),
            route=Route(name="web", namespace="stage", host="web-stage.apps.local", service="web"),
        )
        output = _render(RunRenderer().render_resources(resources))
        assert "revision r1, rollouts 2" in output
        assert "port 8080" in output
        assert "web-stage.apps.local" in output
