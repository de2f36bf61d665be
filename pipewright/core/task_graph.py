"""Dependency graph builder for pipeline tasks.

The graph's edge set is exactly the union of:
- explicit edges, from every task named in a task's ``run_after``;
- implicit edges, from every task whose result is referenced by one of
  the task's parameter bindings.

All structural problems (unknown tasks/results/params/resources, cycles)
are raised as ``DefinitionError`` subclasses while the graph is built, so
a bad pipeline never starts.  Only the partial order is a contract; the
order returned by ``topological_order`` is one valid linearisation.
"""

from __future__ import annotations

import logging
from collections import deque

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
from pipewright.models.tasks import ParamType, PipelineDefinition, TaskDefinition

logger = logging.getLogger(__name__)

_WHITE, _GREY, _BLACK = 0, 1, 2


class TaskGraph:
    """Directed acyclic graph of pipeline tasks.

    Build with ``TaskGraph.from_pipeline(definition)``.
    """

    def __init__(self, definition: PipelineDefinition) -> None:
        self._definition = definition
        self._tasks: dict[str, TaskDefinition] = {}
        for task in definition.tasks:
            if task.name in self._tasks:
                raise DuplicateTaskError(
                    f"Pipeline '{definition.name}' declares task '{task.name}' twice"
                )
            self._tasks[task.name] = task

        self._order = [t.name for t in definition.tasks]
        self._explicit: dict[str, set[str]] = {name: set() for name in self._order}
        self._implicit: dict[str, set[str]] = {name: set() for name in self._order}

        for task in definition.tasks:
            self._validate_bindings(task)
            self._validate_resources(task)
            for pred in task.run_after:
                if pred not in self._tasks:
                    raise UnknownTaskError(
                        f"Task '{task.name}' runs after unknown task '{pred}'"
                    )
                self._explicit[task.name].add(pred)
            for result_ref in task.result_refs:
                producer = self._tasks.get(result_ref.task)
                if producer is None:
                    raise UnknownTaskError(
                        f"Task '{task.name}' references result '{result_ref.result}' "
                        f"of unknown task '{result_ref.task}'"
                    )
                if result_ref.result not in producer.results:
                    raise UnknownResultError(
                        f"Task '{task.name}' references result '{result_ref.result}' "
                        f"which task '{producer.name}' does not declare "
                        f"(declared: {sorted(producer.results)})"
                    )
                self._implicit[task.name].add(result_ref.task)

        self._predecessors: dict[str, set[str]] = {
            name: self._explicit[name] | self._implicit[name] for name in self._order
        }
        self._dependents: dict[str, list[str]] = {name: [] for name in self._order}
        for name in self._order:
            for pred in sorted(self._predecessors[name], key=self._order.index):
                self._dependents[pred].append(name)

        self._validate_no_cycles()
        logger.debug(
            "Built task graph for '%s': %d tasks, %d edges",
            definition.name,
            len(self._order),
            len(self.edges),
        )

    @classmethod
    def from_pipeline(cls, definition: PipelineDefinition) -> TaskGraph:
        return cls(definition)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_bindings(self, task: TaskDefinition) -> None:
        declared = {spec.name: spec for spec in task.params}
        for name, value in task.param_values.items():
            spec = declared.get(name)
            if spec is None:
                raise UnknownParamError(
                    f"Task '{task.name}' binds undeclared parameter '{name}'"
                )
            if spec.type == ParamType.STRING and isinstance(value, list):
                raise DefinitionError(
                    f"Task '{task.name}' binds an array to string parameter '{name}'"
                )
        for spec in task.params:
            if spec.required and spec.name not in task.param_values:
                raise MissingParamError(
                    f"Task '{task.name}' requires parameter '{spec.name}' "
                    f"but it is not bound and has no default"
                )
        pipeline_params = {p.name for p in self._definition.params}
        for param_ref in task.param_refs:
            if param_ref.name not in pipeline_params:
                raise UnknownParamError(
                    f"Task '{task.name}' references undeclared pipeline "
                    f"parameter '{param_ref.name}'"
                )

    def _validate_resources(self, task: TaskDefinition) -> None:
        available = set(self._definition.resources)
        for resource in task.resources:
            if resource not in available:
                raise UnknownResourceError(
                    f"Task '{task.name}' needs resource '{resource}' which "
                    f"pipeline '{self._definition.name}' does not provide"
                )

    def _validate_no_cycles(self) -> None:
        """Three-colour DFS over predecessor edges; reports the cycle path."""
        colour = {name: _WHITE for name in self._order}
        stack: list[str] = []

        def visit(node: str) -> None:
            colour[node] = _GREY
            stack.append(node)
            for nxt in self._dependents[node]:
                if colour[nxt] == _GREY:
                    start = stack.index(nxt)
                    raise CyclicDependencyError(stack[start:] + [nxt])
                if colour[nxt] == _WHITE:
                    visit(nxt)
            stack.pop()
            colour[node] = _BLACK

        for name in self._order:
            if colour[name] == _WHITE:
                visit(name)

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    @property
    def definition(self) -> PipelineDefinition:
        return self._definition

    @property
    def task_names(self) -> list[str]:
        """Task names in declaration order."""
        return list(self._order)

    def get_task(self, name: str) -> TaskDefinition:
        return self._tasks[name]

    def predecessors(self, name: str) -> set[str]:
        """Direct predecessors: explicit plus implicit."""
        return set(self._predecessors[name])

    def explicit_predecessors(self, name: str) -> set[str]:
        return set(self._explicit[name])

    def implicit_predecessors(self, name: str) -> set[str]:
        return set(self._implicit[name])

    def dependents(self, name: str) -> list[str]:
        """Direct dependents of a task."""
        return list(self._dependents[name])

    def descendants(self, name: str) -> list[str]:
        """All transitive dependents (BFS order)."""
        result: list[str] = []
        queue = deque(self._dependents[name])
        visited: set[str] = set()
        while queue:
            node = queue.popleft()
            if node in visited:
                continue
            visited.add(node)
            result.append(node)
            queue.extend(self._dependents[node])
        return result

    @property
    def edges(self) -> set[tuple[str, str]]:
        """All ``(predecessor, task)`` edges."""
        return {
            (pred, name)
            for name, preds in self._predecessors.items()
            for pred in preds
        }

    @property
    def roots(self) -> list[str]:
        return [name for name in self._order if not self._predecessors[name]]

    def topological_order(self) -> list[str]:
        """One valid execution order (Kahn, declaration order on ties)."""
        in_degree = {name: len(self._predecessors[name]) for name in self._order}
        queue = deque(name for name in self._order if in_degree[name] == 0)
        result: list[str] = []
        while queue:
            node = queue.popleft()
            result.append(node)
            for dep in self._dependents[node]:
                in_degree[dep] -= 1
                if in_degree[dep] == 0:
                    queue.append(dep)
        return result

    def levels(self) -> list[list[str]]:
        """Group tasks by longest distance from a root.

        Tasks within one level have no dependency on each other.
        """
        depth: dict[str, int] = {}
        for name in self.topological_order():
            preds = self._predecessors[name]
            depth[name] = 1 + max((depth[p] for p in preds), default=-1)
        grouped: list[list[str]] = []
        for name in self._order:
            level = depth[name]
            while len(grouped) <= level:
                grouped.append([])
            grouped[level].append(name)
        return grouped

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, name: object) -> bool:
        return name in self._tasks
