"""Runtime configuration — env-driven via pydantic-settings.

Reads from a ``.env`` file and ``PIPEWRIGHT_*`` environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from pipewright.models.promotion import CleanupPolicy, RoutePolicy


class Settings(BaseSettings):
    """Process-wide settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export PIPEWRIGHT_LOG_LEVEL=DEBUG
        export PIPEWRIGHT_MAX_WORKERS=4
        export PIPEWRIGHT_CLEANUP_POLICY=strict

    Or via .env file::

        PIPEWRIGHT_LEDGER_PATH=/var/lib/pipewright/ledger.db
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PIPEWRIGHT_",
        env_file_encoding="utf-8",
    )

    # Logging
    log_level: str = "INFO"
    debug: bool = False

    # Storage paths
    ledger_path: Path = Path(".pipewright/ledger.db")
    platform_state_path: Path = Path(".pipewright/platform.json")
    workspace_dir: Path = Path(".pipewright/workspaces")

    # Scheduler
    max_workers: int = 8
    fail_fast: bool = True
    task_timeout_seconds: float | None = None

    # Artifact identity
    revision_length: int = Field(default=7, ge=4, le=40)

    # Promotion
    cleanup_policy: CleanupPolicy = CleanupPolicy.BEST_EFFORT
    route_policy: RoutePolicy = RoutePolicy.PRESERVE
    domain: str = "apps.local"

    # OpenShift
    image_registry: str = "image-registry.openshift-image-registry.svc:5000"


# Module-level singleton; import as `from pipewright.config import config`
config = Settings()
