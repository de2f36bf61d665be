"""Pipewright: dependency-ordered, concurrent build pipelines with
revision-tagged environment promotion.

  - Task DAG inferred from ``run_after`` and from result references
  - Independent tasks run concurrently; failures skip their descendants
  - Write-once result store with dispatch-time parameter substitution
  - Short content-derived revision ids that tag every build
  - Idempotent promotion: re-tag, replace the deployment, keep the route,
    roll out explicitly, all under a per-(application, environment) lock
  - Hash-chained SQLite run ledger with a Rich monitor
"""

__version__ = "0.1.0"
__description__ = "Concurrent build pipelines and environment promotion"

from pipewright.core.orchestrator import Orchestrator
from pipewright.core.promoter import EnvironmentPromoter
from pipewright.loader import load_pipeline
from pipewright.cli.app import app as cli

__all__ = ["Orchestrator", "EnvironmentPromoter", "load_pipeline", "cli", "__version__"]
