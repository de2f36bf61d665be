"""Pipewright data models — all Pydantic v2, all frozen (immutable)."""

from pipewright.models.config import PipelineConfig, RunConfig, new_run_id
from pipewright.models.ledger import LedgerEntry
from pipewright.models.platform import (
    Deployment,
    EnvironmentResources,
    EnvironmentSlot,
    ImageRecord,
    Route,
    Service,
)
from pipewright.models.promotion import (
    CleanupPolicy,
    PromotionAction,
    PromotionRecord,
    PromotionRequest,
    RoutePolicy,
)
from pipewright.models.runs import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    PipelineRunResult,
    RunState,
    TaskOutcome,
    TaskRun,
    TaskState,
)
from pipewright.models.tasks import (
    Expression,
    ParamRef,
    ParamSpec,
    ParamType,
    PipelineDefinition,
    ResultRef,
    StepSpec,
    TaskDefinition,
    param,
    ref,
)

__all__ = [
    # tasks
    "Expression",
    "ParamRef",
    "ParamSpec",
    "ParamType",
    "PipelineDefinition",
    "ResultRef",
    "StepSpec",
    "TaskDefinition",
    "param",
    "ref",
    # runs
    "TaskState",
    "RunState",
    "TaskOutcome",
    "TaskRun",
    "PipelineRunResult",
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    # ledger
    "LedgerEntry",
    # promotion
    "CleanupPolicy",
    "RoutePolicy",
    "PromotionRequest",
    "PromotionAction",
    "PromotionRecord",
    # platform
    "ImageRecord",
    "Deployment",
    "Service",
    "Route",
    "EnvironmentSlot",
    "EnvironmentResources",
    # config
    "PipelineConfig",
    "RunConfig",
    "new_run_id",
]
