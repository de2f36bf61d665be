"""Pipeline and run configuration models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


def new_run_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"pw-{ts}-{uuid.uuid4().hex[:6]}"


class PipelineConfig(BaseModel):
    """Engine-level configuration shared by every run of an Orchestrator."""

    model_config = ConfigDict(frozen=True)

    ledger_db_path: Path = Path(".pipewright/ledger.db")
    workspace_dir: Path = Path(".pipewright/workspaces")
    max_workers: int = Field(default=8, ge=1)
    fail_fast: bool = True


class RunConfig(BaseModel):
    """Per-run configuration, created when a run starts."""

    model_config = ConfigDict(frozen=True)

    run_id: str = Field(default_factory=new_run_id)
    pipeline_name: str
    params: dict[str, str | list[str]] = {}
    pipeline_config: PipelineConfig = PipelineConfig()
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
