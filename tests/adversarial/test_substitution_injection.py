"""Adversarial tests: values that look like references stay literal.

Substitution is a single pass.  A result or parameter value containing
``$(params.x)``, ``$(tasks.t.results.r)`` or ``$(results.r.path)`` is
data, never a second template.
"""

from __future__ import annotations

import pytest

from pipewright.core.executors import ShellExecutor
from pipewright.core.orchestrator import Orchestrator
from pipewright.core.task_graph import TaskGraph
from pipewright.models.tasks import Expression, ParamSpec, StepSpec, param, ref

PAYLOADS = [
    "$(params.token)",
    "$(tasks.emit.results.v)",
    "$(results.out.path)",
    "prefix-$(params.token)-$(params.token)",
]


@pytest.mark.parametrize("payload", PAYLOADS)
def test_result_value_not_reexpanded(
    orchestrator, callable_executor, make_task, make_pipeline, payload
):
    seen: dict = {}
    callable_executor.register("emit", lambda p, c: {"v": payload})
    callable_executor.register("use", lambda p, c: seen.update(p))
    definition = make_pipeline(
        make_task("emit", results=["v"]),
        make_task(
            "use",
            params=["v", "token"],
            param_values={"v": Expression.of("<", ref("emit", "v"), ">"), "token": param("token")},
        ),
        params=[ParamSpec(name="token", default="s3cret")],
    )

    result = orchestrator.run_pipeline(definition)

    assert result.succeeded, result.error
    assert seen["v"] == f"<{payload}>"
    assert seen["token"] == "s3cret"


def test_pipeline_param_value_not_parsed(
    orchestrator, callable_executor, make_task, make_pipeline
):
    seen: dict = {}
    callable_executor.register("emit", lambda p, c: {"v": "real"})
    callable_executor.register("use", lambda p, c: seen.update(p))
    definition = make_pipeline(
        make_task("emit", results=["v"]),
        make_task("use", params=["msg"], param_values={"msg": param("message")}),
        params=[ParamSpec(name="message")],
    )

    result = orchestrator.run_pipeline(
        definition, {"message": "$(tasks.emit.results.v)"}
    )

    assert result.succeeded
    assert seen == {"msg": "$(tasks.emit.results.v)"}
    assert TaskGraph.from_pipeline(definition).predecessors("use") == set()


@pytest.mark.parametrize("payload", ["$(params.token)", "$(results.out.path)"])
def test_shell_pipeline_keeps_payload_literal(
    pipeline_config, ledger, make_task, make_pipeline, payload
):
    orchestrator = Orchestrator(pipeline_config, ShellExecutor(), ledger=ledger)
    definition = make_pipeline(
        make_task(
            "emit",
            results=["v"],
            steps=[
                StepSpec(
                    name="emit",
                    script="printf '%s' \"$PAYLOAD\" > $(results.v.path)",
                    env={"PAYLOAD": payload},
                )
            ],
        ),
        make_task(
            "use",
            params=["v", "token"],
            param_values={"v": ref("emit", "v"), "token": param("token")},
            results=["out"],
            steps=[
                StepSpec(
                    name="echo",
                    script="printf '%s' '$(params.v)' > $(results.out.path)",
                )
            ],
        ),
        params=[ParamSpec(name="token", default="s3cret")],
    )

    result = orchestrator.run_pipeline(definition)

    assert result.succeeded, result.error
    assert result.results["use"]["out"] == payload


def test_render_script_single_pass(tmp_path):
    script = ShellExecutor.render_script(
        "a=$(params.a) b=$(params.b)",
        {"a": "$(params.b)", "b": "$(results.out.path)"},
        tmp_path,
    )
    assert script == "a=$(params.b) b=$(results.out.path)"
