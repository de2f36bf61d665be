"""Shared construction of platforms, promoters and executors for CLI commands."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from pipewright.config import Settings
from pipewright.core.builtins import BuiltinExecutor
from pipewright.core.environment import EnvironmentLocks
from pipewright.core.executors import RoutingExecutor, ShellExecutor, TaskExecutor
from pipewright.core.promoter import EnvironmentPromoter
from pipewright.core.run_ledger import RunLedger
from pipewright.models.promotion import CleanupPolicy, RoutePolicy
from pipewright.platform.local import LocalPlatform
from pipewright.platform.openshift import OpenShiftPlatform


class PlatformKind(str, Enum):
    LOCAL = "local"
    OPENSHIFT = "openshift"


def configure_logging(level: str = "INFO") -> None:
    """Send log records to stderr through a RichHandler."""
    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        markup=False,
        show_path=False,
        log_time_format="%H:%M:%S",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())


def make_platform(
    kind: PlatformKind, state_path: Path, settings: Settings
) -> LocalPlatform | OpenShiftPlatform:
    """Raises ``PlatformError`` if the local state file cannot be read."""
    if kind == PlatformKind.OPENSHIFT:
        return OpenShiftPlatform(registry=settings.image_registry)
    return LocalPlatform(state_path)


def make_promoter(
    platform: LocalPlatform | OpenShiftPlatform,
    settings: Settings,
    *,
    ledger: RunLedger | None = None,
    cleanup_policy: CleanupPolicy | None = None,
    route_policy: RoutePolicy | None = None,
) -> EnvironmentPromoter:
    return EnvironmentPromoter(
        platform,
        platform,
        cleanup_policy=cleanup_policy or settings.cleanup_policy,
        route_policy=route_policy or settings.route_policy,
        locks=EnvironmentLocks(),
        ledger=ledger,
        domain=settings.domain,
    )


def make_executor(
    platform: LocalPlatform | OpenShiftPlatform,
    promoter: EnvironmentPromoter,
    settings: Settings,
    *,
    source_root: Path = Path("."),
) -> TaskExecutor:
    builtins = BuiltinExecutor(
        builder=platform,
        promoter=promoter,
        source_root=source_root,
        revision_length=settings.revision_length,
    )
    return RoutingExecutor(builtins, ShellExecutor(timeout=settings.task_timeout_seconds))
