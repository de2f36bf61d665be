"""Pluggable task executors.

Defines the ``TaskExecutor`` Protocol the scheduler dispatches to, along
with the default implementations:

1. **ShellExecutor**: runs each step's script in a shell.
2. **CallableExecutor**: maps task names to Python callables.
3. **RoutingExecutor**: sends tasks with a ``builtin`` to one executor
   and everything else to another.

Executors report failure through ``TaskOutcome.exit_code``; an exception
raised by an executor is treated by the scheduler as exit code 1.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from pipewright.models.runs import TaskOutcome
from pipewright.models.tasks import TaskDefinition

logger = logging.getLogger(__name__)

# $(params.name) and $(results.name.path) inside step scripts
_SCRIPT_REF = re.compile(r"\$\((params|results)\.([A-Za-z0-9_.-]+?)(\.path)?\)")


class ExecutionContext(BaseModel):
    """Run-scoped information handed to an executor."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    pipeline_name: str
    workspace: Path


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class TaskExecutor(Protocol):
    """Protocol for task execution backends."""

    def execute(
        self,
        task: TaskDefinition,
        params: Mapping[str, str | list[str]],
        context: ExecutionContext,
    ) -> TaskOutcome:
        """Run ``task``'s body with resolved ``params`` and report the outcome."""
        ...


# ---------------------------------------------------------------------------
# Shell
# ---------------------------------------------------------------------------


def _env_name(param_name: str) -> str:
    return "PARAM_" + re.sub(r"[^A-Za-z0-9]", "_", param_name).upper()


def _stringify(value: str | list[str]) -> str:
    return " ".join(value) if isinstance(value, list) else value


class ShellExecutor:
    """Runs task steps as shell scripts.

    Each step script sees:
    - ``$(params.<name>)`` substituted textually (single pass);
    - ``$(results.<name>.path)`` substituted with the file the step writes
      that result to;
    - ``PARAM_<NAME>`` environment variables, plus ``RESULTS_DIR`` and
      ``WORKSPACE``.

    Steps run in order and stop at the first non-zero exit.  Declared
    results are read from ``RESULTS_DIR`` after the last step.

    Parameters
    ----------
    shell:
        Interpreter invoked as ``<shell> -c <script>``.  Defaults to bash,
        falling back to sh.
    timeout:
        Optional per-step timeout in seconds.  A timed-out step exits 124.
    """

    def __init__(self, shell: str | None = None, *, timeout: float | None = None) -> None:
        self._shell = shell or shutil.which("bash") or "sh"
        self._timeout = timeout

    def execute(
        self,
        task: TaskDefinition,
        params: Mapping[str, str | list[str]],
        context: ExecutionContext,
    ) -> TaskOutcome:
        workdir = Path(context.workspace)
        results_dir = workdir / ".results" / task.name
        results_dir.mkdir(parents=True, exist_ok=True)

        env = dict(os.environ)
        env.update({_env_name(k): _stringify(v) for k, v in params.items()})
        env["RESULTS_DIR"] = str(results_dir)
        env["WORKSPACE"] = str(workdir)
        env["PIPEWRIGHT_RUN_ID"] = context.run_id

        log_parts: list[str] = []
        for step in task.steps:
            script = self.render_script(step.script, params, results_dir)
            step_env = {**env, **step.env}
            logger.debug("[%s] %s/%s: running step", context.run_id, task.name, step.name)
            try:
                proc = subprocess.run(
                    [self._shell, "-c", script],
                    cwd=str(workdir),
                    env=step_env,
                    capture_output=True,
                    text=True,
                    timeout=self._timeout,
                    check=False,
                )
            except subprocess.TimeoutExpired:
                log_parts.append(f"[{step.name}] timed out after {self._timeout}s")
                return TaskOutcome(exit_code=124, log="\n".join(log_parts))
            log_parts.append(f"[{step.name}]\n{proc.stdout}{proc.stderr}".rstrip())
            if proc.returncode != 0:
                return TaskOutcome(exit_code=proc.returncode, log="\n".join(log_parts))

        results: dict[str, str] = {}
        missing: list[str] = []
        for name in task.results:
            path = results_dir / name
            if path.is_file():
                results[name] = path.read_text(encoding="utf-8").rstrip("\n")
            else:
                missing.append(name)
        if missing:
            log_parts.append(f"declared result(s) not written: {', '.join(missing)}")
            return TaskOutcome(exit_code=1, log="\n".join(log_parts))
        return TaskOutcome(exit_code=0, results=results, log="\n".join(log_parts))

    @staticmethod
    def render_script(
        script: str, params: Mapping[str, str | list[str]], results_dir: Path
    ) -> str:
        """Substitute ``$(params.x)`` and ``$(results.x.path)`` in one pass."""

        def _sub(match: re.Match[str]) -> str:
            kind, name, path_suffix = match.group(1), match.group(2), match.group(3)
            if kind == "params" and not path_suffix and name in params:
                return _stringify(params[name])
            if kind == "results" and path_suffix:
                return str(results_dir / name)
            return match.group(0)

        return _SCRIPT_REF.sub(_sub, script)


# ---------------------------------------------------------------------------
# Callables
# ---------------------------------------------------------------------------

TaskCallable = Callable[[Mapping[str, Any], ExecutionContext], Any]


class CallableExecutor:
    """Runs tasks by calling registered Python functions.

    A callable receives ``(params, context)`` and may return a
    ``TaskOutcome``, a ``dict`` of results, or ``None`` (no results).
    """

    def __init__(self, handlers: Mapping[str, TaskCallable] | None = None) -> None:
        self._handlers: dict[str, TaskCallable] = dict(handlers or {})

    def register(self, name: str, handler: TaskCallable) -> None:
        self._handlers[name] = handler

    def handles(self, name: str) -> bool:
        return name in self._handlers

    def execute(
        self,
        task: TaskDefinition,
        params: Mapping[str, str | list[str]],
        context: ExecutionContext,
    ) -> TaskOutcome:
        key = task.builtin or task.name
        handler = self._handlers.get(key)
        if handler is None:
            return TaskOutcome(exit_code=127, log=f"no handler registered for '{key}'")
        returned = handler(params, context)
        if isinstance(returned, TaskOutcome):
            return returned
        if returned is None:
            return TaskOutcome()
        return TaskOutcome(results={k: str(v) for k, v in dict(returned).items()})


class RoutingExecutor:
    """Dispatches builtin tasks to ``builtins`` and the rest to ``default``."""

    def __init__(self, builtins: TaskExecutor, default: TaskExecutor) -> None:
        self._builtins = builtins
        self._default = default

    def execute(
        self,
        task: TaskDefinition,
        params: Mapping[str, str | list[str]],
        context: ExecutionContext,
    ) -> TaskOutcome:
        executor = self._builtins if task.builtin else self._default
        return executor.execute(task, params, context)
