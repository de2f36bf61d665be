"""Platform protocols — registry, builder and deployment backend.

The promoter and the builtin tasks only ever talk to these Protocols.
Two implementations ship with Pipewright:

* ``LocalPlatform``: in-memory or JSON-file state, for tests and laptops.
* ``OpenShiftPlatform``: drives a cluster through the ``oc`` CLI.

Namespaces are environment-scoped: the promoter maps an environment name
to the namespace that isolates it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from pipewright.models.platform import (
    Deployment,
    EnvironmentResources,
    EnvironmentSlot,
    ImageRecord,
    Route,
    Service,
)


@runtime_checkable
class ArtifactRegistry(Protocol):
    """Tagged image storage, one image stream per (namespace, application)."""

    def push(self, namespace: str, application: str, tag: str, digest: str) -> ImageRecord:
        """Point ``namespace/application:tag`` at ``digest``."""
        ...

    def get_digest(self, namespace: str, application: str, tag: str) -> str | None:
        """Digest the tag points to, or None if the tag does not exist."""
        ...

    def exists(self, namespace: str, application: str, tag: str) -> bool:
        ...

    def tag(
        self, source_namespace: str, target_namespace: str, application: str, tag: str
    ) -> ImageRecord:
        """Copy a tag across namespaces without rebuilding."""
        ...


@runtime_checkable
class ImageBuilder(Protocol):
    def build(self, namespace: str, application: str, tag: str, context: Path) -> str:
        """Build ``context`` into ``namespace/application:tag``; returns the digest."""
        ...


@runtime_checkable
class DeploymentBackend(Protocol):
    """Reconciliation primitives for deployments, services and routes.

    Every ``delete_*`` returns True if something was deleted and False if
    there was nothing to delete.  Failures raise ``PlatformError``.
    """

    def get_deployment(self, namespace: str, application: str) -> Deployment | None: ...

    def create_deployment(
        self, namespace: str, application: str, image: str, revision: str
    ) -> Deployment: ...

    def delete_deployment(self, namespace: str, application: str) -> bool: ...

    def get_service(self, namespace: str, application: str) -> Service | None: ...

    def create_service(self, namespace: str, application: str) -> Service: ...

    def delete_service(self, namespace: str, application: str) -> bool: ...

    def get_route(self, namespace: str, application: str) -> Route | None: ...

    def create_route(self, namespace: str, application: str, host: str) -> Route: ...

    def delete_route(self, namespace: str, application: str) -> bool: ...

    def trigger_rollout(self, namespace: str, application: str) -> Deployment:
        """Explicitly roll out the deployment's current image."""
        ...

    def list_resources(self, namespace: str, application: str) -> EnvironmentResources: ...

    def get_slot(self, namespace: str, application: str) -> EnvironmentSlot:
        """Current environment slot; version 0 when nothing was ever promoted."""
        ...

    def claim_slot(
        self, namespace: str, application: str, *, expected_version: int, holder: str
    ) -> EnvironmentSlot:
        """Mark the slot as being replaced by ``holder`` (compare-and-swap).

        Raises ``ConcurrentPromotionError`` if the stored version is not
        ``expected_version`` or another holder already claimed the slot.
        Version, revision and image are left as they are.
        """
        ...

    def commit_slot(
        self,
        namespace: str,
        application: str,
        *,
        expected_version: int,
        revision: str,
        image: str,
        holder: str | None = None,
    ) -> EnvironmentSlot:
        """Compare-and-swap the slot to ``revision`` and clear the claim.

        Raises ``ConcurrentPromotionError`` if the stored version is not
        ``expected_version`` or the slot is not claimed by ``holder``.
        """
        ...

    def release_slot(self, namespace: str, application: str, *, holder: str) -> bool:
        """Drop ``holder``'s claim without changing the slot.  False if not held by it."""
        ...
