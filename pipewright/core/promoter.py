"""Environment promoter — move a built revision into another environment.

A promotion never rebuilds.  Given ``(application, revision, source,
target)`` it:

0. checks that ``<app>:<revision>`` exists in the source namespace (else
   ``PromotionPreconditionError``, before any change to the target), then
   claims the target environment slot with compare-and-swap so that a
   concurrent promotion fails before it touches anything;
1. re-tags the image into the target namespace (no-op if the tag already
   points at the same digest);
2. deletes the target's deployment and service (and route, under
   ``RoutePolicy.RECREATE``);
3. creates the deployment from the freshly tagged image, the service if
   missing, and the route only if none exists;
4. triggers the rollout explicitly;
5. commits the claimed slot, bumping its version and releasing the claim.

The claim and steps 1-5 run under the (application, target) lock.  A
failure after the claim releases it; the slot version only moves on
commit.  Replaying the same request converges to the same end state.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager

from pipewright.core.environment import EnvironmentLocks
from pipewright.core.hasher import compute_input_hash, compute_output_hash
from pipewright.core.run_ledger import RunLedger
from pipewright.errors import (
    CleanupError,
    PlatformError,
    PromotionError,
    PromotionPreconditionError,
)
from pipewright.models.ledger import LedgerEntry
from pipewright.models.platform import EnvironmentSlot
from pipewright.models.promotion import (
    CleanupPolicy,
    PromotionAction,
    PromotionRecord,
    PromotionRequest,
    RoutePolicy,
)
from pipewright.platform.base import ArtifactRegistry, DeploymentBackend

logger = logging.getLogger(__name__)


class EnvironmentPromoter:
    """Promotes revision-tagged images between environments.

    Parameters
    ----------
    registry:
        Where images live; tags are copied between namespaces.
    backend:
        Deployment primitives for the target namespace.
    cleanup_policy:
        ``STRICT`` aborts when stale resources cannot be deleted;
        ``BEST_EFFORT`` logs, records and carries on.
    route_policy:
        ``PRESERVE`` keeps an existing route (and its host) across
        promotions; ``RECREATE`` deletes and recreates it.
    locks:
        Shared lock registry.  Pass the same instance to every promoter in
        a process so promotions of one (application, environment) serialise.
    ledger:
        Optional run ledger; each promotion is recorded under subject
        ``promote:<application>``.
    domain:
        Suffix for generated route hosts.
    namespaces:
        Environment name -> namespace.  Unmapped environments use their own
        name as namespace.
    """

    def __init__(
        self,
        registry: ArtifactRegistry,
        backend: DeploymentBackend,
        *,
        cleanup_policy: CleanupPolicy = CleanupPolicy.BEST_EFFORT,
        route_policy: RoutePolicy = RoutePolicy.PRESERVE,
        locks: EnvironmentLocks | None = None,
        ledger: RunLedger | None = None,
        domain: str = "apps.local",
        namespaces: Mapping[str, str] | None = None,
    ) -> None:
        self._registry = registry
        self._backend = backend
        self.cleanup_policy = cleanup_policy
        self.route_policy = route_policy
        self._locks = locks or EnvironmentLocks()
        self._ledger = ledger
        self._domain = domain
        self._namespaces = dict(namespaces or {})

    def namespace_for(self, environment: str) -> str:
        return self._namespaces.get(environment, environment)

    def host_for(self, application: str, environment: str) -> str:
        return f"{application}-{self.namespace_for(environment)}.{self._domain}"

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def promote(self, request: PromotionRequest) -> PromotionRecord:
        """Reproduce ``request.revision`` of the application in the target."""
        promotion_id = f"pr-{uuid.uuid4().hex[:12]}"
        app, revision = request.application, request.revision
        source_ns = self.namespace_for(request.source_env)
        target_ns = self.namespace_for(request.target_env)

        try:
            if request.source_env == request.target_env:
                raise PromotionPreconditionError(
                    f"Source and target environment are both '{request.source_env}'"
                )
            digest = self._registry.get_digest(source_ns, app, revision)
            if digest is None:
                raise PromotionPreconditionError(
                    f"Artifact {source_ns}/{app}:{revision} does not exist in "
                    f"environment '{request.source_env}'"
                )

            logger.info(
                "Promoting %s:%s from %s to %s",
                app, revision, request.source_env, request.target_env,
            )
            with self._locks.hold(app, request.target_env), \
                    self._claimed(target_ns, app, promotion_id) as slot:
                actions: list[PromotionAction] = []
                existing = self._registry.get_digest(target_ns, app, revision)
                if existing == digest:
                    actions.append(
                        PromotionAction(
                            action="keep", resource="image",
                            name=f"{target_ns}/{app}:{revision}", detail=digest,
                        )
                    )
                else:
                    if existing is not None:
                        logger.warning(
                            "%s/%s:%s pointed at %s; re-tagging to %s",
                            target_ns, app, revision, existing, digest,
                        )
                    image = self._registry.tag(source_ns, target_ns, app, revision)
                    actions.append(
                        PromotionAction(
                            action="tag", resource="image", name=image.reference, detail=digest
                        )
                    )
                record = self._replace(
                    promotion_id, request, target_ns, slot, digest=digest, actions=actions
                )
        except PromotionError as exc:
            self._record(promotion_id, request, "failed", message=str(exc))
            raise
        except PlatformError as exc:
            self._record(promotion_id, request, "failed", message=str(exc))
            raise PromotionError(f"Promotion of {app}:{revision} failed: {exc}") from exc

        self._record(promotion_id, request, "succeeded", record=record)
        logger.info(
            "Promoted %s:%s to %s (slot version %d)",
            app, revision, request.target_env, record.slot_version,
        )
        return record

    def deploy(self, application: str, environment: str, revision: str) -> PromotionRecord:
        """Replace the live deployment in ``environment`` with an image already there.

        Used by the ``deploy`` builtin right after a build; the image must
        already be tagged ``revision`` in the environment's namespace.
        """
        request = PromotionRequest(
            application=application,
            revision=revision,
            source_env=environment,
            target_env=environment,
        )
        promotion_id = f"pr-{uuid.uuid4().hex[:12]}"
        namespace = self.namespace_for(environment)
        try:
            digest = self._registry.get_digest(namespace, application, revision)
            if digest is None:
                raise PromotionPreconditionError(
                    f"Artifact {namespace}/{application}:{revision} does not exist"
                )
            with self._locks.hold(application, environment), \
                    self._claimed(namespace, application, promotion_id) as slot:
                record = self._replace(
                    promotion_id, request, namespace, slot, digest=digest, actions=[]
                )
        except PromotionError as exc:
            self._record(promotion_id, request, "failed", message=str(exc))
            raise
        except PlatformError as exc:
            self._record(promotion_id, request, "failed", message=str(exc))
            raise PromotionError(f"Deploy of {application}:{revision} failed: {exc}") from exc
        self._record(promotion_id, request, "succeeded", record=record)
        return record

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    @contextmanager
    def _claimed(
        self, namespace: str, application: str, promotion_id: str
    ) -> Iterator[EnvironmentSlot]:
        """Hold the environment slot for ``promotion_id`` until it is committed.

        The claim is a compare-and-swap on the slot version read just
        before it, so a promotion that lost a race raises
        ``ConcurrentPromotionError`` here, before any target mutation.  An
        error inside the block releases the claim and propagates.
        """
        current = self._backend.get_slot(namespace, application)
        slot = self._backend.claim_slot(
            namespace, application, expected_version=current.version, holder=promotion_id
        )
        try:
            yield slot
        except Exception:
            try:
                self._backend.release_slot(namespace, application, holder=promotion_id)
            except PlatformError as exc:
                logger.error(
                    "Could not release slot %s/%s held by %s: %s",
                    namespace, application, promotion_id, exc,
                )
            raise

    def _replace(
        self,
        promotion_id: str,
        request: PromotionRequest,
        namespace: str,
        slot: EnvironmentSlot,
        *,
        digest: str,
        actions: list[PromotionAction],
    ) -> PromotionRecord:
        app, revision = request.application, request.revision
        image = f"{namespace}/{app}:{revision}"
        cleanup_errors: list[str] = []

        previous = self._backend.get_deployment(namespace, app)
        replaced_revision = previous.revision if previous is not None else slot.revision

        # -- cleanup ---------------------------------------------------
        deleters = [
            ("deployment", self._backend.delete_deployment),
            ("service", self._backend.delete_service),
        ]
        if self.route_policy == RoutePolicy.RECREATE:
            deleters.append(("route", self._backend.delete_route))
        for resource, delete in deleters:
            try:
                if delete(namespace, app):
                    actions.append(
                        PromotionAction(action="delete", resource=resource, name=f"{namespace}/{app}")
                    )
            except PlatformError as exc:
                message = f"could not delete {resource} {namespace}/{app}: {exc}"
                if self.cleanup_policy == CleanupPolicy.STRICT:
                    raise CleanupError(message) from exc
                logger.warning("Best-effort cleanup: %s", message)
                cleanup_errors.append(message)

        # -- create ----------------------------------------------------
        if self._backend.get_deployment(namespace, app) is not None:
            raise PromotionError(
                f"Stale deployment {namespace}/{app} could not be removed; "
                f"cannot deploy revision {revision}"
            )
        self._backend.create_deployment(namespace, app, image, revision)
        actions.append(
            PromotionAction(action="create", resource="deployment", name=f"{namespace}/{app}", detail=image)
        )

        if self._backend.get_service(namespace, app) is None:
            self._backend.create_service(namespace, app)
            actions.append(PromotionAction(action="create", resource="service", name=f"{namespace}/{app}"))
        else:
            actions.append(PromotionAction(action="keep", resource="service", name=f"{namespace}/{app}"))

        route = self._backend.get_route(namespace, app)
        if route is None:
            route = self._backend.create_route(
                namespace, app, self.host_for(app, request.target_env)
            )
            actions.append(
                PromotionAction(action="create", resource="route", name=f"{namespace}/{app}", detail=route.host)
            )
        else:
            actions.append(
                PromotionAction(action="keep", resource="route", name=f"{namespace}/{app}", detail=route.host)
            )

        # -- rollout + commit ------------------------------------------
        self._backend.trigger_rollout(namespace, app)
        actions.append(
            PromotionAction(action="rollout", resource="deployment", name=f"{namespace}/{app}", detail=revision)
        )
        committed = self._backend.commit_slot(
            namespace, app,
            expected_version=slot.version, revision=revision, image=image, holder=promotion_id,
        )

        return PromotionRecord(
            promotion_id=promotion_id,
            request=request,
            image=image,
            digest=digest,
            actions=actions,
            cleanup_errors=cleanup_errors,
            replaced_revision=replaced_revision,
            slot_version=committed.version,
        )

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def _record(
        self,
        promotion_id: str,
        request: PromotionRequest,
        outcome: str,
        *,
        record: PromotionRecord | None = None,
        message: str = "",
    ) -> None:
        if self._ledger is None:
            return
        output_hash = ""
        if record is not None:
            output_hash = compute_output_hash(
                "promote",
                {
                    "image": record.image,
                    "digest": record.digest,
                    "slot_version": record.slot_version,
                },
            )
            if record.cleanup_errors:
                message = "; ".join(record.cleanup_errors)
        self._ledger.append(
            LedgerEntry(
                run_id=promotion_id,
                subject=f"promote:{request.application}",
                state_transition=f"requested->{outcome}",
                input_hash=compute_input_hash("promote", request.model_dump(mode="json")),
                output_hash=output_hash,
                exit_code=0 if outcome == "succeeded" else 1,
                message=message,
            )
        )
