"""Local platform — registry, builder and deployment backend in one object.

State lives in memory and, when ``state_path`` is given, is persisted as a
JSON document after every mutation so separate CLI invocations (``run``
then ``promote``) see the same environments.

Storage layout (JSON)::

    {
      "images":      {"<ns>/<app>:<tag>": ImageRecord},
      "deployments": {"<ns>/<app>": Deployment},
      "services":    {"<ns>/<app>": Service},
      "routes":      {"<ns>/<app>": Route},
      "slots":       {"<ns>/<app>": EnvironmentSlot}
    }

Every mutating call is appended to ``mutations`` (``"<op> <ns>/<app>"``)
and operations can be made to fail with ``inject_failure`` for testing
cleanup policies.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pipewright.core.hasher import sha256_hex
from pipewright.core.revision import DirectorySource
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

_SECTIONS = ("images", "deployments", "services", "routes", "slots")
_MODELS: dict[str, type] = {
    "images": ImageRecord,
    "deployments": Deployment,
    "services": Service,
    "routes": Route,
    "slots": EnvironmentSlot,
}


def _key(namespace: str, application: str) -> str:
    return f"{namespace}/{application}"


def _image_key(namespace: str, application: str, tag: str) -> str:
    return f"{namespace}/{application}:{tag}"


class LocalPlatform:
    """In-process platform backed by a dict (and optionally a JSON file).

    Parameters
    ----------
    state_path:
        JSON file to load from and persist to.  ``None`` keeps state in
        memory only.
    """

    def __init__(self, state_path: Path | str | None = None) -> None:
        self._path = Path(state_path) if state_path is not None else None
        self._lock = threading.RLock()
        self._state: dict[str, dict[str, Any]] = {s: {} for s in _SECTIONS}
        self._faults: dict[str, int] = {}
        self.mutations: list[str] = []
        if self._path is not None and self._path.exists():
            self._load(self._path)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self, path: Path) -> None:
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            for section in _SECTIONS:
                model = _MODELS[section]
                self._state[section] = {
                    key: model.model_validate(value)
                    for key, value in raw.get(section, {}).items()
                }
        except (OSError, ValueError, AttributeError) as exc:
            raise PlatformError(f"Cannot read platform state {path}: {exc}") from exc

    def _save(self) -> None:
        if self._path is None:
            return
        payload = {
            section: {
                key: value.model_dump(mode="json")
                for key, value in sorted(self._state[section].items())
            }
            for section in _SECTIONS
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self._path)

    def _mutate(self, operation: str, namespace: str, application: str) -> None:
        """Fault-check, then record a mutation."""
        remaining = self._faults.get(operation)
        if remaining is not None:
            if remaining > 1:
                self._faults[operation] = remaining - 1
            elif remaining == 1:
                del self._faults[operation]
            raise PlatformError(
                f"{operation} {_key(namespace, application)} failed (injected)"
            )
        self.mutations.append(f"{operation} {_key(namespace, application)}")

    # ------------------------------------------------------------------
    # Testing hooks
    # ------------------------------------------------------------------

    def inject_failure(self, operation: str, times: int = -1) -> None:
        """Make ``operation`` (e.g. ``"delete_service"``) raise ``PlatformError``.

        ``times=-1`` fails until ``clear_failures`` is called.
        """
        with self._lock:
            self._faults[operation] = times

    def clear_failures(self) -> None:
        with self._lock:
            self._faults.clear()

    def mutations_in(self, namespace: str) -> list[str]:
        return [m for m in self.mutations if m.split(" ", 1)[1].startswith(f"{namespace}/")]

    # ------------------------------------------------------------------
    # ArtifactRegistry
    # ------------------------------------------------------------------

    def push(self, namespace: str, application: str, tag: str, digest: str) -> ImageRecord:
        with self._lock:
            self._mutate("push", namespace, application)
            record = ImageRecord(
                namespace=namespace, application=application, tag=tag, digest=digest
            )
            self._state["images"][_image_key(namespace, application, tag)] = record
            self._save()
        logger.info("Pushed %s (%s)", record.reference, digest)
        return record

    def get_digest(self, namespace: str, application: str, tag: str) -> str | None:
        with self._lock:
            record = self._state["images"].get(_image_key(namespace, application, tag))
            return record.digest if record is not None else None

    def exists(self, namespace: str, application: str, tag: str) -> bool:
        return self.get_digest(namespace, application, tag) is not None

    def tag(
        self, source_namespace: str, target_namespace: str, application: str, tag: str
    ) -> ImageRecord:
        with self._lock:
            digest = self.get_digest(source_namespace, application, tag)
            if digest is None:
                raise PlatformError(
                    f"Image {_image_key(source_namespace, application, tag)} not found"
                )
            self._mutate("tag", target_namespace, application)
            record = ImageRecord(
                namespace=target_namespace, application=application, tag=tag, digest=digest
            )
            self._state["images"][_image_key(target_namespace, application, tag)] = record
            self._save()
        logger.info(
            "Tagged %s -> %s", _image_key(source_namespace, application, tag), record.reference
        )
        return record

    # ------------------------------------------------------------------
    # ImageBuilder
    # ------------------------------------------------------------------

    def build(self, namespace: str, application: str, tag: str, context: Path) -> str:
        """Digest is the content hash of ``context`` (or of the tag if absent)."""
        context = Path(context)
        if context.is_dir():
            digest = "sha256:" + DirectorySource(context).digest()
        else:
            digest = "sha256:" + sha256_hex(f"{application}:{tag}".encode("utf-8"))
        self.push(namespace, application, tag, digest)
        return digest

    # ------------------------------------------------------------------
    # DeploymentBackend
    # ------------------------------------------------------------------

    def get_deployment(self, namespace: str, application: str) -> Deployment | None:
        with self._lock:
            return self._state["deployments"].get(_key(namespace, application))

    def create_deployment(
        self, namespace: str, application: str, image: str, revision: str
    ) -> Deployment:
        with self._lock:
            key = _key(namespace, application)
            if key in self._state["deployments"]:
                raise PlatformError(f"Deployment {key} already exists")
            self._mutate("create_deployment", namespace, application)
            deployment = Deployment(
                name=application,
                namespace=namespace,
                image=image,
                revision=revision,
                labels={"app": application, "app.kubernetes.io/version": revision},
            )
            self._state["deployments"][key] = deployment
            self._save()
            return deployment

    def delete_deployment(self, namespace: str, application: str) -> bool:
        return self._delete("deployments", "delete_deployment", namespace, application)

    def get_service(self, namespace: str, application: str) -> Service | None:
        with self._lock:
            return self._state["services"].get(_key(namespace, application))

    def create_service(self, namespace: str, application: str) -> Service:
        with self._lock:
            key = _key(namespace, application)
            if key in self._state["services"]:
                raise PlatformError(f"Service {key} already exists")
            self._mutate("create_service", namespace, application)
            service = Service(name=application, namespace=namespace, selector={"app": application})
            self._state["services"][key] = service
            self._save()
            return service

    def delete_service(self, namespace: str, application: str) -> bool:
        return self._delete("services", "delete_service", namespace, application)

    def get_route(self, namespace: str, application: str) -> Route | None:
        with self._lock:
            return self._state["routes"].get(_key(namespace, application))

    def create_route(self, namespace: str, application: str, host: str) -> Route:
        with self._lock:
            key = _key(namespace, application)
            if key in self._state["routes"]:
                raise PlatformError(f"Route {key} already exists")
            self._mutate("create_route", namespace, application)
            route = Route(name=application, namespace=namespace, host=host, service=application)
            self._state["routes"][key] = route
            self._save()
            return route

    def delete_route(self, namespace: str, application: str) -> bool:
        return self._delete("routes", "delete_route", namespace, application)

    def trigger_rollout(self, namespace: str, application: str) -> Deployment:
        with self._lock:
            key = _key(namespace, application)
            current = self._state["deployments"].get(key)
            if current is None:
                raise PlatformError(f"Deployment {key} not found")
            self._mutate("trigger_rollout", namespace, application)
            rolled = current.model_copy(update={"rollouts": current.rollouts + 1})
            self._state["deployments"][key] = rolled
            self._save()
        logger.info("Rolled out %s (revision %s)", key, rolled.revision)
        return rolled

    def list_resources(self, namespace: str, application: str) -> EnvironmentResources:
        with self._lock:
            key = _key(namespace, application)
            images = sorted(
                (
                    record
                    for record in self._state["images"].values()
                    if record.namespace == namespace and record.application == application
                ),
                key=lambda r: r.tag,
            )
            return EnvironmentResources(
                application=application,
                namespace=namespace,
                deployment=self._state["deployments"].get(key),
                service=self._state["services"].get(key),
                route=self._state["routes"].get(key),
                images=images,
            )

    def get_slot(self, namespace: str, application: str) -> EnvironmentSlot:
        with self._lock:
            return self._current_slot(namespace, application)

    def _current_slot(self, namespace: str, application: str) -> EnvironmentSlot:
        slot = self._state["slots"].get(_key(namespace, application))
        if slot is None:
            return EnvironmentSlot(application=application, environment=namespace)
        return slot

    def _check_slot(
        self, current: EnvironmentSlot, expected_version: int, holder: str | None
    ) -> None:
        key = _key(current.environment, current.application)
        if current.version != expected_version:
            raise ConcurrentPromotionError(
                f"Environment slot {key} is at version {current.version}, "
                f"expected {expected_version}"
            )
        if current.holder != holder:
            raise ConcurrentPromotionError(
                f"Environment slot {key} is claimed by {current.holder or 'nobody'}, "
                f"not {holder or 'nobody'}"
            )

    def _store_slot(self, slot: EnvironmentSlot) -> EnvironmentSlot:
        self._state["slots"][_key(slot.environment, slot.application)] = slot
        self._save()
        return slot

    def claim_slot(
        self, namespace: str, application: str, *, expected_version: int, holder: str
    ) -> EnvironmentSlot:
        with self._lock:
            current = self._current_slot(namespace, application)
            self._check_slot(current, expected_version, None)
            self._mutate("claim_slot", namespace, application)
            return self._store_slot(current.model_copy(update={"holder": holder}))

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
        with self._lock:
            current = self._current_slot(namespace, application)
            self._check_slot(current, expected_version, holder)
            self._mutate("commit_slot", namespace, application)
            return self._store_slot(
                EnvironmentSlot(
                    application=application,
                    environment=namespace,
                    version=current.version + 1,
                    revision=revision,
                    image=image,
                    updated_at=datetime.now(timezone.utc),
                )
            )

    def release_slot(self, namespace: str, application: str, *, holder: str) -> bool:
        with self._lock:
            current = self._current_slot(namespace, application)
            if current.holder != holder:
                return False
            self._mutate("release_slot", namespace, application)
            self._store_slot(current.model_copy(update={"holder": None}))
        logger.info("Released slot %s held by %s", _key(namespace, application), holder)
        return True

    # ------------------------------------------------------------------

    def _delete(self, section: str, operation: str, namespace: str, application: str) -> bool:
        with self._lock:
            key = _key(namespace, application)
            if key not in self._state[section]:
                return False
            self._mutate(operation, namespace, application)
            del self._state[section][key]
            self._save()
        logger.info("Deleted %s %s", section.rstrip("s"), key)
        return True
