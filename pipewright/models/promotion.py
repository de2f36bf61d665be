"""Promotion request/record models and promotion policies."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class CleanupPolicy(str, Enum):
    """What to do when stale target resources cannot be deleted."""

    STRICT = "strict"  # abort the promotion
    BEST_EFFORT = "best_effort"  # log, record and continue


class RoutePolicy(str, Enum):
    """Whether an existing external route survives a promotion."""

    PRESERVE = "preserve"
    RECREATE = "recreate"


class PromotionRequest(BaseModel):
    """The (application, revision, source, target) tuple to promote."""

    model_config = ConfigDict(frozen=True)

    application: str
    revision: str
    source_env: str
    target_env: str

    @property
    def key(self) -> tuple[str, str]:
        """Mutual-exclusion key: one promotion per (application, target)."""
        return (self.application, self.target_env)


class PromotionAction(BaseModel):
    """One mutation (or no-op) the promoter performed."""

    model_config = ConfigDict(frozen=True)

    action: str  # "tag", "delete", "create", "keep", "rollout"
    resource: str  # "image", "deployment", "service", "route"
    name: str
    detail: str = ""


class PromotionRecord(BaseModel):
    """Result of one promotion invocation."""

    model_config = ConfigDict(frozen=True)

    promotion_id: str = Field(default_factory=lambda: f"pr-{uuid.uuid4().hex[:12]}")
    request: PromotionRequest
    image: str
    digest: str
    actions: list[PromotionAction] = []
    cleanup_errors: list[str] = []
    replaced_revision: str | None = None
    slot_version: int = 0
    completed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def retagged(self) -> bool:
        return any(a.action == "tag" for a in self.actions)
