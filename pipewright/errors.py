"""Pipewright error hierarchy.

Every error the engine raises derives from ``PipewrightError`` so that
callers (CLI, embedding systems) can tell engine failures apart from
programming errors.  The taxonomy mirrors when an error can occur:

- ``DefinitionError``: detected while building the task graph; no task runs.
- ``DispatchError``: detected when a task is about to start; fails that task.
- ``TaskExecutionError``: a task's steps exited non-zero.
- ``PromotionError``: raised by the Environment Promoter.
"""

from __future__ import annotations


class PipewrightError(Exception):
    """Base class for all Pipewright errors."""


# ---------------------------------------------------------------------------
# Definition errors: raised before any task executes
# ---------------------------------------------------------------------------


class DefinitionError(PipewrightError, ValueError):
    """A pipeline definition is structurally invalid."""


class DuplicateTaskError(DefinitionError):
    """Two tasks in one pipeline share a name."""


class UnknownTaskError(DefinitionError):
    """A task references (run_after or result ref) a task that does not exist."""


class UnknownResultError(DefinitionError):
    """A result reference names a result its task does not declare."""


class UnknownParamError(DefinitionError):
    """A binding or reference names a parameter that was never declared."""


class MissingParamError(DefinitionError):
    """A required task parameter has neither a binding nor a default."""


class UnknownResourceError(DefinitionError):
    """A task declares an input resource the pipeline does not provide."""


class CyclicDependencyError(DefinitionError):
    """The task graph contains a cycle."""

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(
            "Task graph has a cycle: " + " -> ".join(self.cycle)
        )


class ReferenceSyntaxError(DefinitionError):
    """A ``$(...)`` expression in a loaded definition could not be parsed."""


# ---------------------------------------------------------------------------
# Run-time errors
# ---------------------------------------------------------------------------


class InvalidTransitionError(PipewrightError, RuntimeError):
    """A task run was asked to make a state transition that is not allowed."""


class DispatchError(PipewrightError, RuntimeError):
    """A task could not be dispatched (its inputs could not be resolved)."""


class UnresolvedReferenceError(DispatchError):
    """A result reference was read before its producing task published it."""

    def __init__(self, task_name: str, result_name: str) -> None:
        self.task_name = task_name
        self.result_name = result_name
        super().__init__(
            f"Result '{result_name}' of task '{task_name}' has not been published"
        )


class ParamTypeError(DispatchError):
    """A resolved parameter value does not match its declared type."""


class ResultPublishError(PipewrightError, RuntimeError):
    """A task tried to publish results it is not entitled to publish."""


class ResultAlreadyPublishedError(ResultPublishError):
    """A task's results were already published for this run."""


class TaskExecutionError(PipewrightError, RuntimeError):
    """A task's steps exited with a non-zero status."""

    def __init__(self, task_name: str, exit_code: int, message: str = "") -> None:
        self.task_name = task_name
        self.exit_code = exit_code
        detail = f": {message}" if message else ""
        super().__init__(f"Task '{task_name}' failed with exit code {exit_code}{detail}")


class SourceUnavailableError(PipewrightError, RuntimeError):
    """Source content could not be read to derive a revision id."""


# ---------------------------------------------------------------------------
# Promotion errors
# ---------------------------------------------------------------------------


class PromotionError(PipewrightError, RuntimeError):
    """Base class for Environment Promoter failures."""


class PromotionPreconditionError(PromotionError):
    """A promotion precondition is unmet; nothing in the target was touched."""


class CleanupError(PromotionError):
    """Stale resources in the target environment could not be removed."""


class ConcurrentPromotionError(PromotionError):
    """Another promotion modified the same environment slot concurrently."""


class PlatformError(PipewrightError, RuntimeError):
    """A platform backend (registry, builder, deployment) call failed."""
