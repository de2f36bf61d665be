"""Task and pipeline definition models.

Parameter bindings are typed expressions, never raw strings with embedded
reference syntax.  An ``Expression`` is an ordered list of parts; each part
is a literal string, a ``ResultRef`` (``task`` + ``result``) or a
``ParamRef`` (a pipeline-level parameter).  The task graph reads the
references directly off the expression; nothing is scanned from text.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ParamType(str, Enum):
    """Declared type of a task or pipeline parameter."""

    STRING = "string"
    ARRAY = "array"


class ParamSpec(BaseModel):
    """A declared parameter.  Required iff it has no default."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: ParamType = ParamType.STRING
    default: str | list[str] | None = None
    description: str = ""

    @property
    def required(self) -> bool:
        return self.default is None


# ---------------------------------------------------------------------------
# Typed references
# ---------------------------------------------------------------------------


class ResultRef(BaseModel):
    """Reference to result ``result`` published by task ``task``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["result"] = "result"
    task: str
    result: str

    def __str__(self) -> str:
        return f"$(tasks.{self.task}.results.{self.result})"


class ParamRef(BaseModel):
    """Reference to a pipeline-level parameter."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["param"] = "param"
    name: str

    def __str__(self) -> str:
        return f"$(params.{self.name})"


Part = Union[str, ResultRef, ParamRef]


class Expression(BaseModel):
    """An ordered concatenation of literal text and references."""

    model_config = ConfigDict(frozen=True)

    parts: list[Part] = []

    @classmethod
    def of(cls, *parts: Part) -> Expression:
        return cls(parts=list(parts))

    @property
    def result_refs(self) -> list[ResultRef]:
        return [p for p in self.parts if isinstance(p, ResultRef)]

    @property
    def param_refs(self) -> list[ParamRef]:
        return [p for p in self.parts if isinstance(p, ParamRef)]

    def __str__(self) -> str:
        return "".join(str(p) for p in self.parts)


ParamValue = Union[Expression, list[Expression]]


def ref(task: str, result: str) -> ResultRef:
    """Shorthand for ``ResultRef(task=..., result=...)``."""
    return ResultRef(task=task, result=result)


def param(name: str) -> ParamRef:
    """Shorthand for ``ParamRef(name=...)``."""
    return ParamRef(name=name)


def _coerce_expression(value: Any) -> Any:
    if isinstance(value, (str, ResultRef, ParamRef)):
        return Expression(parts=[value])
    return value


def _coerce_binding(value: Any) -> Any:
    # A list is always an array binding; build multi-part strings with Expression.of
    if isinstance(value, list):
        return [_coerce_expression(v) for v in value]
    return _coerce_expression(value)


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------


class StepSpec(BaseModel):
    """One step of a task body.  Opaque to the scheduler."""

    model_config = ConfigDict(frozen=True)

    name: str
    script: str = ""
    image: str | None = None
    env: dict[str, str] = {}


class TaskDefinition(BaseModel):
    """A unit of work inside a pipeline.

    ``run_after`` lists explicit predecessors.  Further predecessors are
    implied by every ``ResultRef`` inside ``param_values``.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    params: list[ParamSpec] = []
    resources: list[str] = []
    results: list[str] = []
    steps: list[StepSpec] = []
    run_after: list[str] = []
    param_values: dict[str, ParamValue] = {}
    builtin: str | None = None
    description: str = ""

    @field_validator("param_values", mode="before")
    @classmethod
    def _coerce_param_values(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: _coerce_binding(v) for k, v in value.items()}
        return value

    def param_spec(self, name: str) -> ParamSpec | None:
        for spec in self.params:
            if spec.name == name:
                return spec
        return None

    @property
    def result_refs(self) -> list[ResultRef]:
        """Every result reference in the bindings, in declaration order."""
        refs: list[ResultRef] = []
        for value in self.param_values.values():
            expressions = value if isinstance(value, list) else [value]
            for expr in expressions:
                refs.extend(expr.result_refs)
        return refs

    @property
    def param_refs(self) -> list[ParamRef]:
        refs: list[ParamRef] = []
        for value in self.param_values.values():
            expressions = value if isinstance(value, list) else [value]
            for expr in expressions:
                refs.extend(expr.param_refs)
        return refs


class PipelineDefinition(BaseModel):
    """An ordered collection of tasks plus pipeline-level parameters."""

    model_config = ConfigDict(frozen=True)

    name: str
    params: list[ParamSpec] = []
    resources: list[str] = []
    tasks: list[TaskDefinition] = Field(default_factory=list)
    description: str = ""

    def get_task(self, name: str) -> TaskDefinition:
        for task in self.tasks:
            if task.name == name:
                return task
        raise KeyError(name)

    @property
    def task_names(self) -> list[str]:
        return [t.name for t in self.tasks]
