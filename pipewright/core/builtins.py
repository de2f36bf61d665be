"""In-process builtin tasks.

A task with ``builtin: <name>`` is executed by ``BuiltinExecutor`` instead
of a shell.  Builtins read their inputs from the task's resolved params and
publish only the results the task declares.

=================  =====================================  ==================
builtin            params                                 results
=================  =====================================  ==================
git-revision       path=".", ref="HEAD"                   revision
content-revision   path="."                               revision
build-image        application, revision, environment,    image, digest
                   context="."
deploy             application, revision, environment     image, revision
=================  =====================================  ==================
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pipewright.core.executors import CallableExecutor, ExecutionContext
from pipewright.core.promoter import EnvironmentPromoter
from pipewright.core.revision import (
    DEFAULT_REVISION_LENGTH,
    DirectorySource,
    GitSource,
    resolve_revision,
)
from pipewright.errors import PipewrightError
from pipewright.models.runs import TaskOutcome
from pipewright.models.tasks import TaskDefinition
from pipewright.platform.base import ImageBuilder

logger = logging.getLogger(__name__)

BUILTIN_NAMES = ("git-revision", "content-revision", "build-image", "deploy")


def _required(params: Mapping[str, Any], name: str, builtin: str) -> str:
    value = params.get(name)
    if not value:
        raise PipewrightError(f"builtin '{builtin}' needs parameter '{name}'")
    return str(value)


class BuiltinExecutor(CallableExecutor):
    """``CallableExecutor`` pre-loaded with the platform-backed builtins.

    Parameters
    ----------
    builder:
        Image builder used by ``build-image``.
    promoter:
        Promoter whose ``deploy`` is used by the ``deploy`` builtin.
    source_root:
        Base directory for relative ``path``/``context`` params.
    revision_length:
        Length of revision ids produced by the revision builtins.
    """

    def __init__(
        self,
        *,
        builder: ImageBuilder | None = None,
        promoter: EnvironmentPromoter | None = None,
        source_root: Path | str = ".",
        revision_length: int = DEFAULT_REVISION_LENGTH,
    ) -> None:
        super().__init__()
        self._builder = builder
        self._promoter = promoter
        self._root = Path(source_root)
        self._length = revision_length

        self.register("git-revision", self._git_revision)
        self.register("content-revision", self._content_revision)
        if builder is not None:
            self.register("build-image", self._build_image)
        if promoter is not None:
            self.register("deploy", self._deploy)

    def execute(
        self,
        task: TaskDefinition,
        params: Mapping[str, str | list[str]],
        context: ExecutionContext,
    ) -> TaskOutcome:
        try:
            outcome = super().execute(task, params, context)
        except PipewrightError as exc:
            logger.error("[%s] builtin %s failed: %s", context.run_id, task.builtin, exc)
            return TaskOutcome(exit_code=1, log=f"{type(exc).__name__}: {exc}")
        declared = {k: v for k, v in outcome.results.items() if k in task.results}
        return outcome.model_copy(update={"results": declared})

    def _path(self, value: Any) -> Path:
        path = Path(str(value or "."))
        return path if path.is_absolute() else self._root / path

    # ------------------------------------------------------------------
    # Builtins
    # ------------------------------------------------------------------

    def _git_revision(self, params: Mapping[str, Any], context: ExecutionContext) -> dict[str, str]:
        source = GitSource(self._path(params.get("path")), str(params.get("ref") or "HEAD"))
        return {"revision": resolve_revision(source, self._length)}

    def _content_revision(
        self, params: Mapping[str, Any], context: ExecutionContext
    ) -> dict[str, str]:
        source = DirectorySource(self._path(params.get("path")))
        return {"revision": resolve_revision(source, self._length)}

    def _build_image(self, params: Mapping[str, Any], context: ExecutionContext) -> dict[str, str]:
        if self._builder is None:
            raise PipewrightError("builtin 'build-image' needs an image builder")
        application = _required(params, "application", "build-image")
        revision = _required(params, "revision", "build-image")
        environment = _required(params, "environment", "build-image")
        namespace = (
            self._promoter.namespace_for(environment) if self._promoter is not None else environment
        )
        digest = self._builder.build(
            namespace, application, revision, self._path(params.get("context"))
        )
        logger.info("[%s] built %s/%s:%s", context.run_id, namespace, application, revision)
        return {"image": f"{namespace}/{application}:{revision}", "digest": digest}

    def _deploy(self, params: Mapping[str, Any], context: ExecutionContext) -> dict[str, str]:
        if self._promoter is None:
            raise PipewrightError("builtin 'deploy' needs a promoter")
        record = self._promoter.deploy(
            _required(params, "application", "deploy"),
            _required(params, "environment", "deploy"),
            _required(params, "revision", "deploy"),
        )
        return {"image": record.image, "revision": record.request.revision}
