"""Platform resource models — images, deployments, services, routes.

These mirror the handful of platform objects the promoter reconciles.
Backends translate them to their own representation (JSON state file,
``oc`` objects, ...).
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class ImageRecord(BaseModel):
    """A tagged image in an environment-scoped namespace."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    application: str
    tag: str
    digest: str  # "sha256:<hex>"
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def reference(self) -> str:
        return f"{self.namespace}/{self.application}:{self.tag}"


class Deployment(BaseModel):
    """A running deployment of one application in one namespace."""

    model_config = ConfigDict(frozen=True)

    name: str
    namespace: str
    image: str
    revision: str
    labels: dict[str, str] = {}
    rollouts: int = 0  # number of explicit rollout triggers


class Service(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    namespace: str
    selector: dict[str, str] = {}
    port: int = 8080


class Route(BaseModel):
    """External exposure of a service.  Its host survives promotions."""

    model_config = ConfigDict(frozen=True)

    name: str
    namespace: str
    host: str
    service: str


class EnvironmentSlot(BaseModel):
    """The at-most-one live deployment of ``application`` in ``environment``.

    ``version`` increases on every successful replace; a replace succeeds
    only if the caller presents the version it read.  ``holder`` is the id
    of the promotion that claimed the slot and is replacing resources right
    now; nobody else may claim or commit until it commits or releases.
    """

    model_config = ConfigDict(frozen=True)

    application: str
    environment: str
    version: int = 0
    revision: str | None = None
    image: str | None = None
    updated_at: datetime | None = None
    holder: str | None = None


class EnvironmentResources(BaseModel):
    """Everything the platform holds for one application in one namespace."""

    model_config = ConfigDict(frozen=True)

    application: str
    namespace: str
    deployment: Deployment | None = None
    service: Service | None = None
    route: Route | None = None
    images: list[ImageRecord] = []
