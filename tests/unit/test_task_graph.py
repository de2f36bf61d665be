"""Tests for TaskGraph edge inference, validation and ordering."""

from __future__ import annotations

import pytest

from pipewright.core.task_graph import TaskGraph
from pipewright.errors import (
    CyclicDependencyError,
    DefinitionError,
    DuplicateTaskError,
    MissingParamError,
    UnknownParamError,
    UnknownResourceError,
    UnknownResultError,
    UnknownTaskError,
)
from pipewright.models.tasks import Expression, ParamSpec, ParamType, param, ref


class TestEdgeInference:
    def test_explicit_edges_from_run_after(self, make_task, make_pipeline):
        graph = TaskGraph.from_pipeline(
            make_pipeline(make_task("a"), make_task("b", run_after=["a"]))
        )
        assert graph.edges == {("a", "b")}
        assert graph.explicit_predecessors("b") == {"a"}
        assert graph.implicit_predecessors("b") == set()

    def test_implicit_edges_from_result_refs(self, make_task, make_pipeline):
        graph = TaskGraph.from_pipeline(
            make_pipeline(
                make_task("fetch", results=["revision"]),
                make_task(
                    "build",
                    params=["tag"],
                    param_values={"tag": ref("fetch", "revision")},
                ),
            )
        )
        assert graph.edges == {("fetch", "build")}
        assert graph.implicit_predecessors("build") == {"fetch"}

    def test_edge_set_is_union_without_duplicates(self, make_task, make_pipeline):
        graph = TaskGraph.from_pipeline(
            make_pipeline(
                make_task("fetch", results=["revision"]),
                make_task(
                    "build",
                    params=["tag"],
                    run_after=["fetch"],
                    param_values={"tag": Expression.of("v-", ref("fetch", "revision"))},
                ),
            )
        )
        assert graph.edges == {("fetch", "build")}
        assert graph.predecessors("build") == {"fetch"}

    def test_refs_inside_array_bindings_create_edges(self, make_task, make_pipeline):
        graph = TaskGraph.from_pipeline(
            make_pipeline(
                make_task("a", results=["x"]),
                make_task("b", results=["y"]),
                make_task(
                    "c",
                    params=[ParamSpec(name="items", type=ParamType.ARRAY)],
                    param_values={"items": [ref("a", "x"), ref("b", "y")]},
                ),
            )
        )
        assert graph.predecessors("c") == {"a", "b"}

    def test_independent_tasks_have_no_edges(self, make_task, make_pipeline):
        graph = TaskGraph.from_pipeline(make_pipeline(make_task("a"), make_task("b")))
        assert graph.edges == set()
        assert graph.roots == ["a", "b"]


class TestValidation:
    def test_duplicate_task_rejected(self, make_task, make_pipeline):
        with pytest.raises(DuplicateTaskError):
            TaskGraph.from_pipeline(make_pipeline(make_task("a"), make_task("a")))

    def test_run_after_unknown_task(self, make_task, make_pipeline):
        with pytest.raises(UnknownTaskError, match="ghost"):
            TaskGraph.from_pipeline(make_pipeline(make_task("a", run_after=["ghost"])))

    def test_reference_to_unknown_task(self, make_task, make_pipeline):
        with pytest.raises(UnknownTaskError):
            TaskGraph.from_pipeline(
                make_pipeline(
                    make_task("a", params=["p"], param_values={"p": ref("ghost", "r")})
                )
            )

    def test_reference_to_undeclared_result(self, make_task, make_pipeline):
        with pytest.raises(UnknownResultError, match="digest"):
            TaskGraph.from_pipeline(
                make_pipeline(
                    make_task("build", results=["image"]),
                    make_task("deploy", params=["d"], param_values={"d": ref("build", "digest")}),
                )
            )

    def test_binding_undeclared_param(self, make_task, make_pipeline):
        with pytest.raises(UnknownParamError):
            TaskGraph.from_pipeline(make_pipeline(make_task("a", param_values={"nope": "x"})))

    def test_required_param_without_binding(self, make_task, make_pipeline):
        with pytest.raises(MissingParamError):
            TaskGraph.from_pipeline(make_pipeline(make_task("a", params=["needed"])))

    def test_param_with_default_need_not_be_bound(self, make_task, make_pipeline):
        task = make_task("a", params=[ParamSpec(name="level", default="info")])
        graph = TaskGraph.from_pipeline(make_pipeline(task))
        assert "a" in graph

    def test_reference_to_undeclared_pipeline_param(self, make_task, make_pipeline):
        with pytest.raises(UnknownParamError):
            TaskGraph.from_pipeline(
                make_pipeline(make_task("a", params=["p"], param_values={"p": param("missing")}))
            )

    def test_array_bound_to_string_param(self, make_task, make_pipeline):
        with pytest.raises(DefinitionError):
            TaskGraph.from_pipeline(
                make_pipeline(make_task("a", params=["p"], param_values={"p": ["x", "y"]}))
            )

    def test_unknown_resource(self, make_task, make_pipeline):
        with pytest.raises(UnknownResourceError):
            TaskGraph.from_pipeline(make_pipeline(make_task("a", resources=["source"])))

    def test_declared_resource_accepted(self, make_task, make_pipeline):
        pipeline = make_pipeline(make_task("a", resources=["source"]), resources=["source"])
        assert len(TaskGraph.from_pipeline(pipeline)) == 1

    def test_definition_errors_are_value_errors(self):
        assert issubclass(CyclicDependencyError, DefinitionError)
        assert issubclass(DefinitionError, ValueError)


class TestCycles:
    def test_two_task_cycle_reports_path(self, make_task, make_pipeline):
        with pytest.raises(CyclicDependencyError) as exc_info:
            TaskGraph.from_pipeline(
                make_pipeline(
                    make_task("a", run_after=["b"]),
                    make_task("b", run_after=["a"]),
                )
            )
        cycle = exc_info.value.cycle
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"a", "b"}
        assert "->" in str(exc_info.value)

    def test_self_dependency_is_a_cycle(self, make_task, make_pipeline):
        with pytest.raises(CyclicDependencyError):
            TaskGraph.from_pipeline(make_pipeline(make_task("a", run_after=["a"])))

    def test_cycle_through_result_reference(self, make_task, make_pipeline):
        with pytest.raises(CyclicDependencyError):
            TaskGraph.from_pipeline(
                make_pipeline(
                    make_task("a", results=["x"], params=["p"], param_values={"p": ref("c", "z")}),
                    make_task("b", results=["y"], params=["p"], param_values={"p": ref("a", "x")}),
                    make_task("c", results=["z"], params=["p"], param_values={"p": ref("b", "y")}),
                )
            )


class TestQueries:
    @pytest.fixture
    def diamond(self, make_task, make_pipeline) -> TaskGraph:
        return TaskGraph.from_pipeline(
            make_pipeline(
                make_task("root"),
                make_task("left", run_after=["root"]),
                make_task("right", run_after=["root"]),
                make_task("join", run_after=["left", "right"]),
            )
        )

    def test_topological_order_respects_edges(self, diamond: TaskGraph):
        order = diamond.topological_order()
        for pred, task in diamond.edges:
            assert order.index(pred) < order.index(task)
        assert len(order) == 4

    def test_levels(self, diamond: TaskGraph):
        assert diamond.levels() == [["root"], ["left", "right"], ["join"]]

    def test_descendants_transitive(self, diamond: TaskGraph):
        assert set(diamond.descendants("root")) == {"left", "right", "join"}
        assert diamond.descendants("join") == []

    def test_dependents_direct_only(self, diamond: TaskGraph):
        assert set(diamond.dependents("root")) == {"left", "right"}
