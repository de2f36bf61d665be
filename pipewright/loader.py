"""Pipeline definition loader (YAML or JSON).

This is the only place where the textual reference syntax is understood::

    $(tasks.<task>.results.<result>)   -> ResultRef
    $(params.<name>)                   -> ParamRef
    $$(                                -> a literal "$("

Bindings are parsed once, here, into typed ``Expression`` objects; the
rest of the engine never scans strings for references.

Document shape::

    name: build-and-deploy
    params:
      - name: application
      - {name: environment, default: dev}
    resources: [source]
    tasks:
      - name: revision
        builtin: content-revision
        params: [{name: path, default: "."}]
        results: [revision]
      - name: build
        params: [application, revision]
        param_values:
          application: $(params.application)
          revision: $(tasks.revision.results.revision)
        steps:
          - name: compile
            script: make IMAGE_TAG=$(params.revision)
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from pipewright.errors import DefinitionError, ReferenceSyntaxError
from pipewright.models.tasks import (
    Expression,
    ParamRef,
    ParamSpec,
    PipelineDefinition,
    ResultRef,
    StepSpec,
    TaskDefinition,
)

logger = logging.getLogger(__name__)

_NAME = r"[A-Za-z0-9_-]+"
_RESULT_REF = re.compile(rf"tasks\.({_NAME})\.results\.({_NAME})")
_PARAM_REF = re.compile(rf"params\.({_NAME})")

SUPPORTED_SUFFIXES = (".yaml", ".yml", ".json")


# ---------------------------------------------------------------------------
# Reference syntax
# ---------------------------------------------------------------------------


def parse_expression(text: str) -> Expression:
    """Parse one binding string into literal and reference parts."""
    parts: list[str | ResultRef | ParamRef] = []
    literal: list[str] = []
    i = 0
    while i < len(text):
        if text.startswith("$$(", i):
            literal.append("$(")
            i += 3
            continue
        if text.startswith("$(", i):
            end = text.find(")", i + 2)
            if end == -1:
                raise ReferenceSyntaxError(f"Unterminated reference in {text!r}")
            body = text[i + 2:end]
            result_match = _RESULT_REF.fullmatch(body)
            param_match = _PARAM_REF.fullmatch(body)
            ref: ResultRef | ParamRef
            if result_match is not None:
                ref = ResultRef(task=result_match.group(1), result=result_match.group(2))
            elif param_match is not None:
                ref = ParamRef(name=param_match.group(1))
            else:
                raise ReferenceSyntaxError(f"Unrecognised reference $({body}) in {text!r}")
            if literal:
                parts.append("".join(literal))
                literal = []
            parts.append(ref)
            i = end + 1
            continue
        literal.append(text[i])
        i += 1
    if literal or not parts:
        parts.append("".join(literal))
    return Expression(parts=parts)


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def parse_binding(value: Any) -> Expression | list[Expression]:
    if isinstance(value, list):
        return [parse_expression(_scalar(v)) for v in value]
    if isinstance(value, dict):
        raise DefinitionError(f"A parameter binding cannot be a mapping: {value!r}")
    return parse_expression(_scalar(value))


# ---------------------------------------------------------------------------
# Document -> models
# ---------------------------------------------------------------------------


def _param_specs(raw: Any, owner: str) -> list[ParamSpec]:
    specs: list[ParamSpec] = []
    for item in raw or []:
        if isinstance(item, str):
            specs.append(ParamSpec(name=item))
        elif isinstance(item, dict):
            item = dict(item)
            default = item.get("default")
            if default is not None:
                item["default"] = (
                    [_scalar(v) for v in default] if isinstance(default, list) else _scalar(default)
                )
            specs.append(ParamSpec.model_validate(item))
        else:
            raise DefinitionError(f"{owner}: invalid parameter declaration {item!r}")
    return specs


def _steps(raw: Any, owner: str) -> list[StepSpec]:
    steps: list[StepSpec] = []
    for index, item in enumerate(raw or []):
        if isinstance(item, str):
            steps.append(StepSpec(name=f"step-{index}", script=item))
        elif isinstance(item, dict):
            steps.append(StepSpec.model_validate({"name": f"step-{index}", **item}))
        else:
            raise DefinitionError(f"{owner}: invalid step {item!r}")
    return steps


def _task(raw: Any) -> TaskDefinition:
    if not isinstance(raw, dict) or "name" not in raw:
        raise DefinitionError(f"Every task needs a name: {raw!r}")
    name = str(raw["name"])
    bindings = raw.get("param_values") or {}
    if not isinstance(bindings, dict):
        raise DefinitionError(f"Task '{name}': param_values must be a mapping")
    return TaskDefinition(
        name=name,
        description=str(raw.get("description", "")),
        params=_param_specs(raw.get("params"), f"Task '{name}'"),
        resources=list(raw.get("resources") or []),
        results=[str(r) for r in raw.get("results") or []],
        steps=_steps(raw.get("steps"), f"Task '{name}'"),
        run_after=[str(r) for r in raw.get("run_after") or []],
        param_values={str(k): parse_binding(v) for k, v in bindings.items()},
        builtin=raw.get("builtin"),
    )


def parse_pipeline(data: dict[str, Any]) -> PipelineDefinition:
    """Build a ``PipelineDefinition`` from an already-decoded document."""
    if "name" not in data:
        raise DefinitionError("Pipeline definition needs a name")
    try:
        return PipelineDefinition(
            name=str(data["name"]),
            description=str(data.get("description", "")),
            params=_param_specs(data.get("params"), "Pipeline"),
            resources=list(data.get("resources") or []),
            tasks=[_task(t) for t in data.get("tasks") or []],
        )
    except ValidationError as exc:
        raise DefinitionError(f"Invalid pipeline definition: {exc}") from exc


def load_pipeline(path: Path | str) -> PipelineDefinition:
    """Load a pipeline definition from a YAML or JSON file.

    Structural validity (graph shape, references) is checked later by
    ``TaskGraph.from_pipeline``; this only parses.
    """
    path = Path(path)
    if not path.exists():
        raise DefinitionError(f"Pipeline file not found: {path}")
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise DefinitionError(f"Unsupported pipeline format: {path.suffix}")

    with path.open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) if suffix in (".yaml", ".yml") else json.load(f)
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise DefinitionError(f"Cannot parse {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise DefinitionError(
            f"Pipeline root must be a mapping, got {type(data).__name__}"
        )
    definition = parse_pipeline(data)
    logger.debug("Loaded pipeline %s (%d tasks) from %s", definition.name, len(definition.tasks), path)
    return definition
