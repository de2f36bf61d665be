"""OpenShift backend — drives a cluster through the ``oc`` CLI.

Images live in per-namespace image streams (``<ns>/<app>:<revision>``) and
are pulled through the internal registry, deployments are created paused
so that a tag change never rolls out on its own, and the environment slot
is a ConfigMap whose ``resourceVersion`` gives the compare-and-swap for
claim, commit and release.

The command runner is injectable so the backend can be exercised without a
cluster.
"""

from __future__ import annotations

import json
import logging
import subprocess
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pipewright.errors import ConcurrentPromotionError, PlatformError
from pipewright.models.platform import (
    Deployment,
    EnvironmentResources,
    EnvironmentSlot,
    ImageRecord,
    Route,
    Service,
)

logger = logging.getLogger(__name__)

CommandRunner = Callable[[Sequence[str], "str | None"], subprocess.CompletedProcess]

VERSION_LABEL = "app.kubernetes.io/version"
SLOT_PREFIX = "pipewright-slot-"
INTERNAL_REGISTRY = "image-registry.openshift-image-registry.svc:5000"


def subprocess_runner(oc: str = "oc") -> CommandRunner:
    """Runner that shells out to ``oc``."""

    def _run(args: Sequence[str], stdin: str | None = None) -> subprocess.CompletedProcess:
        return subprocess.run(
            [oc, *args],
            input=stdin,
            capture_output=True,
            text=True,
            check=False,
        )

    return _run


class OpenShiftPlatform:
    """``ArtifactRegistry`` + ``ImageBuilder`` + ``DeploymentBackend`` over ``oc``.

    Parameters
    ----------
    runner:
        Callable ``(args, stdin) -> CompletedProcess``.  Defaults to running
        the ``oc`` binary found on PATH.
    port:
        Container port exposed by created services.
    registry:
        Host the cluster pulls image stream tags from.  Deployments reference
        ``<registry>/<ns>/<app>:<tag>``; an unqualified ``<ns>/<app>:<tag>``
        would resolve against docker.io.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        port: int = 8080,
        registry: str = INTERNAL_REGISTRY,
    ) -> None:
        self._run = runner or subprocess_runner()
        self._port = port
        self._registry = registry.rstrip("/")

    def pull_spec(self, image: str) -> str:
        """``<ns>/<app>:<tag>`` -> the reference a pod pulls from."""
        return f"{self._registry}/{image}"

    def _logical_image(self, pull_spec: str) -> str:
        prefix = self._registry + "/"
        return pull_spec[len(prefix):] if pull_spec.startswith(prefix) else pull_spec

    # ------------------------------------------------------------------
    # oc helpers
    # ------------------------------------------------------------------

    def _oc(self, *args: str, stdin: str | None = None) -> str:
        proc = self._run(list(args), stdin)
        if proc.returncode != 0:
            raise PlatformError(f"oc {' '.join(args)} failed: {proc.stderr.strip()}")
        return proc.stdout

    def _get_json(self, kind: str, name: str, namespace: str) -> dict[str, Any] | None:
        proc = self._run(["get", kind, name, "-n", namespace, "-o", "json"], None)
        if proc.returncode != 0:
            if "NotFound" in proc.stderr or "not found" in proc.stderr:
                return None
            raise PlatformError(f"oc get {kind}/{name} -n {namespace} failed: {proc.stderr.strip()}")
        return json.loads(proc.stdout)

    def _delete(self, kind: str, namespace: str, application: str) -> bool:
        if self._get_json(kind, application, namespace) is None:
            return False
        self._oc("delete", f"{kind}/{application}", "-n", namespace, "--ignore-not-found")
        logger.info("Deleted %s %s/%s", kind, namespace, application)
        return True

    # ------------------------------------------------------------------
    # ArtifactRegistry
    # ------------------------------------------------------------------

    def push(self, namespace: str, application: str, tag: str, digest: str) -> ImageRecord:
        self._oc(
            "tag", f"{namespace}/{application}@{digest}", f"{namespace}/{application}:{tag}"
        )
        return ImageRecord(namespace=namespace, application=application, tag=tag, digest=digest)

    def get_digest(self, namespace: str, application: str, tag: str) -> str | None:
        istag = self._get_json("istag", f"{application}:{tag}", namespace)
        if istag is None:
            return None
        return istag.get("image", {}).get("metadata", {}).get("name")

    def exists(self, namespace: str, application: str, tag: str) -> bool:
        return self.get_digest(namespace, application, tag) is not None

    def tag(
        self, source_namespace: str, target_namespace: str, application: str, tag: str
    ) -> ImageRecord:
        digest = self.get_digest(source_namespace, application, tag)
        if digest is None:
            raise PlatformError(f"Image {source_namespace}/{application}:{tag} not found")
        self._oc(
            "tag",
            f"{source_namespace}/{application}:{tag}",
            f"{target_namespace}/{application}:{tag}",
        )
        return ImageRecord(
            namespace=target_namespace, application=application, tag=tag, digest=digest
        )

    # ------------------------------------------------------------------
    # ImageBuilder
    # ------------------------------------------------------------------

    def build(self, namespace: str, application: str, tag: str, context: Path) -> str:
        self._oc(
            "start-build", application, f"--from-dir={context}", "--wait", "-n", namespace
        )
        self._oc("tag", f"{namespace}/{application}:latest", f"{namespace}/{application}:{tag}")
        digest = self.get_digest(namespace, application, tag)
        if digest is None:
            raise PlatformError(f"Build of {namespace}/{application}:{tag} produced no image")
        return digest

    # ------------------------------------------------------------------
    # Deployments
    # ------------------------------------------------------------------

    def get_deployment(self, namespace: str, application: str) -> Deployment | None:
        obj = self._get_json("deployment", application, namespace)
        if obj is None:
            return None
        containers = obj["spec"]["template"]["spec"].get("containers", [])
        labels = obj["metadata"].get("labels", {})
        return Deployment(
            name=application,
            namespace=namespace,
            image=self._logical_image(containers[0]["image"]) if containers else "",
            revision=labels.get(VERSION_LABEL, ""),
            labels=labels,
            rollouts=int(obj.get("status", {}).get("observedGeneration", 0)),
        )

    def create_deployment(
        self, namespace: str, application: str, image: str, revision: str
    ) -> Deployment:
        manifest = {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {
                "name": application,
                "namespace": namespace,
                "labels": {"app": application, VERSION_LABEL: revision},
            },
            "spec": {
                "replicas": 1,
                "paused": True,
                "selector": {"matchLabels": {"app": application}},
                "template": {
                    "metadata": {"labels": {"app": application, VERSION_LABEL: revision}},
                    "spec": {
                        "containers": [
                            {
                                "name": application,
                                "image": self.pull_spec(image),
                                "ports": [{"containerPort": self._port}],
                            }
                        ]
                    },
                },
            },
        }
        self._oc("create", "-f", "-", stdin=json.dumps(manifest))
        return Deployment(
            name=application,
            namespace=namespace,
            image=image,
            revision=revision,
            labels={"app": application, VERSION_LABEL: revision},
        )

    def delete_deployment(self, namespace: str, application: str) -> bool:
        return self._delete("deployment", namespace, application)

    def trigger_rollout(self, namespace: str, application: str) -> Deployment:
        obj = self._get_json("deployment", application, namespace)
        if obj is None:
            raise PlatformError(f"Deployment {namespace}/{application} not found")
        if obj["spec"].get("paused"):
            self._oc("rollout", "resume", f"deployment/{application}", "-n", namespace)
        else:
            self._oc("rollout", "restart", f"deployment/{application}", "-n", namespace)
        deployment = self.get_deployment(namespace, application)
        if deployment is None:
            raise PlatformError(f"Deployment {namespace}/{application} disappeared during rollout")
        return deployment

    # ------------------------------------------------------------------
    # Services / routes
    # ------------------------------------------------------------------

    def get_service(self, namespace: str, application: str) -> Service | None:
        obj = self._get_json("service", application, namespace)
        if obj is None:
            return None
        ports = obj["spec"].get("ports", [])
        return Service(
            name=application,
            namespace=namespace,
            selector=obj["spec"].get("selector", {}),
            port=ports[0]["port"] if ports else self._port,
        )

    def create_service(self, namespace: str, application: str) -> Service:
        self._oc(
            "expose", f"deployment/{application}", f"--port={self._port}", "-n", namespace
        )
        return Service(
            name=application, namespace=namespace, selector={"app": application}, port=self._port
        )

    def delete_service(self, namespace: str, application: str) -> bool:
        return self._delete("service", namespace, application)

    def get_route(self, namespace: str, application: str) -> Route | None:
        obj = self._get_json("route", application, namespace)
        if obj is None:
            return None
        return Route(
            name=application,
            namespace=namespace,
            host=obj["spec"].get("host", ""),
            service=obj["spec"].get("to", {}).get("name", application),
        )

    def create_route(self, namespace: str, application: str, host: str) -> Route:
        self._oc("expose", f"service/{application}", f"--hostname={host}", "-n", namespace)
        return Route(name=application, namespace=namespace, host=host, service=application)

    def delete_route(self, namespace: str, application: str) -> bool:
        return self._delete("route", namespace, application)

    def list_resources(self, namespace: str, application: str) -> EnvironmentResources:
        images: list[ImageRecord] = []
        stream = self._get_json("imagestream", application, namespace)
        if stream is not None:
            for tag in stream.get("status", {}).get("tags", []):
                items = tag.get("items") or []
                if items:
                    images.append(
                        ImageRecord(
                            namespace=namespace,
                            application=application,
                            tag=tag["tag"],
                            digest=items[0]["image"],
                        )
                    )
        return EnvironmentResources(
            application=application,
            namespace=namespace,
            deployment=self.get_deployment(namespace, application),
            service=self.get_service(namespace, application),
            route=self.get_route(namespace, application),
            images=sorted(images, key=lambda r: r.tag),
        )

    # ------------------------------------------------------------------
    # Environment slot (ConfigMap + resourceVersion)
    # ------------------------------------------------------------------

    def get_slot(self, namespace: str, application: str) -> EnvironmentSlot:
        return self._read_slot(namespace, application)[0]

    def _read_slot(
        self, namespace: str, application: str
    ) -> tuple[EnvironmentSlot, dict[str, Any] | None]:
        obj = self._get_json("configmap", SLOT_PREFIX + application, namespace)
        if obj is None:
            return EnvironmentSlot(application=application, environment=namespace), None
        data = obj.get("data", {})
        updated = data.get("updated_at")
        slot = EnvironmentSlot(
            application=application,
            environment=namespace,
            version=int(data.get("version", "0")),
            revision=data.get("revision") or None,
            image=data.get("image") or None,
            updated_at=datetime.fromisoformat(updated) if updated else None,
            holder=data.get("holder") or None,
        )
        return slot, obj

    @staticmethod
    def _check_slot(slot: EnvironmentSlot, expected_version: int, holder: str | None) -> None:
        key = f"{slot.environment}/{slot.application}"
        if slot.version != expected_version:
            raise ConcurrentPromotionError(
                f"Environment slot {key} is at version {slot.version}, "
                f"expected {expected_version}"
            )
        if slot.holder != holder:
            raise ConcurrentPromotionError(
                f"Environment slot {key} is claimed by {slot.holder or 'nobody'}, "
                f"not {holder or 'nobody'}"
            )

    def _write_slot(self, slot: EnvironmentSlot, current: dict[str, Any] | None) -> EnvironmentSlot:
        name = SLOT_PREFIX + slot.application
        metadata: dict[str, Any] = {"name": name, "namespace": slot.environment}
        if current is not None:
            # replace fails with a Conflict if someone wrote in between
            metadata["resourceVersion"] = current["metadata"]["resourceVersion"]
        manifest = {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": metadata,
            "data": {
                "version": str(slot.version),
                "revision": slot.revision or "",
                "image": slot.image or "",
                "updated_at": slot.updated_at.isoformat() if slot.updated_at else "",
                "holder": slot.holder or "",
            },
        }
        verb = "replace" if current is not None else "create"
        proc = self._run([verb, "-f", "-"], json.dumps(manifest))
        if proc.returncode != 0:
            if "Conflict" in proc.stderr or "AlreadyExists" in proc.stderr:
                raise ConcurrentPromotionError(
                    f"Environment slot {slot.environment}/{slot.application} changed concurrently"
                )
            raise PlatformError(f"oc {verb} configmap/{name} failed: {proc.stderr.strip()}")
        return slot

    def claim_slot(
        self, namespace: str, application: str, *, expected_version: int, holder: str
    ) -> EnvironmentSlot:
        slot, current = self._read_slot(namespace, application)
        self._check_slot(slot, expected_version, None)
        return self._write_slot(slot.model_copy(update={"holder": holder}), current)

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
        slot, current = self._read_slot(namespace, application)
        self._check_slot(slot, expected_version, holder)
        committed = EnvironmentSlot(
            application=application,
            environment=namespace,
            version=expected_version + 1,
            revision=revision,
            image=image,
            updated_at=datetime.now(timezone.utc),
        )
        return self._write_slot(committed, current)

    def release_slot(self, namespace: str, application: str, *, holder: str) -> bool:
        slot, current = self._read_slot(namespace, application)
        if slot.holder != holder:
            return False
        self._write_slot(slot.model_copy(update={"holder": None}), current)
        logger.info("Released slot %s/%s held by %s", namespace, application, holder)
        return True
