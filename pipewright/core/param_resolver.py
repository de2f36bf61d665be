"""Deferred parameter substitution.

Bindings are resolved when a task is dispatched, never when the pipeline
is defined, so the values published by upstream tasks in *this* run are
what a task sees.  Substitution is a single pass over typed expression
parts: a published value that happens to contain ``$(...)`` text is
inserted verbatim and never expanded again.
"""

from __future__ import annotations

import logging
from typing import Mapping

from pipewright.core.result_store import ResultStore
from pipewright.errors import (
    DefinitionError,
    MissingParamError,
    ParamTypeError,
    UnknownParamError,
)
from pipewright.models.tasks import (
    Expression,
    ParamRef,
    ParamSpec,
    ParamType,
    PipelineDefinition,
    ResultRef,
    TaskDefinition,
)

logger = logging.getLogger(__name__)

ParamValues = dict[str, str | list[str]]


def resolve_pipeline_params(
    definition: PipelineDefinition,
    provided: Mapping[str, str | list[str]] | None = None,
) -> ParamValues:
    """Merge caller-supplied pipeline params with declared defaults.

    Raises ``UnknownParamError`` for params the pipeline does not declare
    and ``MissingParamError`` for required params that were not supplied.
    """
    provided = dict(provided or {})
    declared = {spec.name: spec for spec in definition.params}

    unknown = sorted(set(provided) - set(declared))
    if unknown:
        raise UnknownParamError(
            f"Pipeline '{definition.name}' does not declare parameter(s): {', '.join(unknown)}"
        )

    values: ParamValues = {}
    for spec in definition.params:
        if spec.name in provided:
            value = provided[spec.name]
        elif spec.default is not None:
            value = spec.default
        else:
            raise MissingParamError(
                f"Pipeline '{definition.name}' requires parameter '{spec.name}'"
            )
        values[spec.name] = _check_type(
            spec, value, owner=definition.name, error=DefinitionError
        )
    return values


def _check_type(
    spec: ParamSpec,
    value: str | list[str],
    *,
    owner: str,
    error: type[Exception] = ParamTypeError,
) -> str | list[str]:
    if spec.type == ParamType.ARRAY:
        if isinstance(value, str):
            raise error(
                f"{owner}: parameter '{spec.name}' is an array but got a string"
            )
        return [str(v) for v in value]
    if not isinstance(value, str):
        raise error(
            f"{owner}: parameter '{spec.name}' is a string but got {type(value).__name__}"
        )
    return value


class ParameterResolver:
    """Resolves a task's parameter bindings against one run's state.

    Parameters
    ----------
    store:
        The run's ResultStore.  Reads are by exact key; an absent key
        raises ``UnresolvedReferenceError``.
    pipeline_params:
        Pipeline-level parameter values (already merged with defaults).
    """

    def __init__(self, store: ResultStore, pipeline_params: Mapping[str, str | list[str]]) -> None:
        self._store = store
        self._pipeline_params = dict(pipeline_params)

    def resolve(self, task: TaskDefinition) -> ParamValues:
        """Return the concrete parameter values for ``task``."""
        values: ParamValues = {}
        for spec in task.params:
            binding = task.param_values.get(spec.name)
            if binding is None:
                if spec.default is None:
                    # The graph builder rejects this; guard for hand-built runs.
                    raise MissingParamError(
                        f"Task '{task.name}' has no value for required parameter '{spec.name}'"
                    )
                value: str | list[str] = spec.default
            elif isinstance(binding, list):
                value = [self.render(expr) for expr in binding]
            elif spec.type == ParamType.ARRAY:
                value = self._render_array(task, spec, binding)
            else:
                value = self.render(binding)
            values[spec.name] = _check_type(spec, value, owner=task.name)
        logger.debug("Resolved %d param(s) for task %s", len(values), task.name)
        return values

    def render(self, expression: Expression) -> str:
        """Concatenate an expression's parts, substituting references once."""
        out: list[str] = []
        for part in expression.parts:
            if isinstance(part, ResultRef):
                out.append(self._store.resolve(part))
            elif isinstance(part, ParamRef):
                value = self._param(part.name)
                if isinstance(value, list):
                    raise ParamTypeError(
                        f"Array parameter '{part.name}' cannot be embedded in a string"
                    )
                out.append(value)
            else:
                out.append(part)
        return "".join(out)

    def _render_array(
        self, task: TaskDefinition, spec: ParamSpec, expression: Expression
    ) -> list[str]:
        # An array param may be bound to a single reference to an array pipeline param
        if len(expression.parts) == 1 and isinstance(expression.parts[0], ParamRef):
            value = self._param(expression.parts[0].name)
            if isinstance(value, list):
                return list(value)
        raise ParamTypeError(
            f"Task '{task.name}': array parameter '{spec.name}' must be bound to "
            f"a list or to an array pipeline parameter"
        )

    def _param(self, name: str) -> str | list[str]:
        try:
            return self._pipeline_params[name]
        except KeyError:
            raise UnknownParamError(f"Pipeline parameter '{name}' has no value") from None
