"""Platform backends — image registry, builder and deployment primitives."""

from pipewright.platform.base import ArtifactRegistry, DeploymentBackend, ImageBuilder
from pipewright.platform.local import LocalPlatform
from pipewright.platform.openshift import OpenShiftPlatform

__all__ = [
    "ArtifactRegistry",
    "DeploymentBackend",
    "ImageBuilder",
    "LocalPlatform",
    "OpenShiftPlatform",
]
