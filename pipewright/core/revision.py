"""Artifact identity resolution — short, content-derived revision ids.

A revision id is the immutable version tag that joins "what was built",
"what runs in dev" and "what is approved for stage".  Two sources are
provided:

- ``GitSource`` asks git for the abbreviated commit hash.
- ``DirectorySource`` hashes a directory tree (paths + bytes) directly,
  for content that is not under version control.

Resolution is deterministic and has no implicit retry: if the source is
unavailable, ``SourceUnavailableError`` is raised and the caller decides
whether to re-run.
"""

from __future__ import annotations

import hashlib
import logging
import re
import subprocess
from pathlib import Path
from typing import Protocol, runtime_checkable

from pipewright.errors import SourceUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_REVISION_LENGTH = 7

_REVISION_RE = re.compile(r"^[0-9a-f]{4,64}$")
_IGNORED_DIRS = frozenset({".git", ".pipewright", "__pycache__"})


@runtime_checkable
class SourceProvider(Protocol):
    """Read-only access to one snapshot of source content."""

    def describe(self) -> str:
        """Human-readable description of the source, for logs."""
        ...

    def revision(self, length: int) -> str:
        """Return the snapshot's revision id, ``length`` hex chars long."""
        ...


def is_revision_id(value: str) -> bool:
    """Whether ``value`` looks like a revision id (lowercase hex)."""
    return bool(_REVISION_RE.match(value))


class GitSource:
    """Revision ids from ``git rev-parse --short``.

    Parameters
    ----------
    path:
        Any directory inside the working tree.
    ref:
        The revision to resolve (default ``HEAD``).
    """

    def __init__(self, path: Path | str = ".", ref: str = "HEAD", *, git: str = "git") -> None:
        self.path = Path(path)
        self.ref = ref
        self._git = git

    def describe(self) -> str:
        return f"git:{self.path}@{self.ref}"

    def revision(self, length: int) -> str:
        cmd = [self._git, "-C", str(self.path), "rev-parse", f"--short={length}", self.ref]
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, timeout=30, check=False)
        except (OSError, subprocess.SubprocessError) as exc:
            raise SourceUnavailableError(f"Cannot run git for {self.describe()}: {exc}") from exc
        if proc.returncode != 0:
            raise SourceUnavailableError(
                f"git rev-parse failed for {self.describe()}: {proc.stderr.strip()}"
            )
        # git may return more than `length` chars to stay unambiguous; keep them
        return proc.stdout.strip()


class DirectorySource:
    """Revision ids from a SHA-256 over a directory tree.

    The digest covers every regular file's relative POSIX path and bytes,
    in sorted path order, so it is independent of filesystem iteration
    order and of file timestamps.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def describe(self) -> str:
        return f"dir:{self.path}"

    def digest(self) -> str:
        if not self.path.is_dir():
            raise SourceUnavailableError(f"Source directory not found: {self.path}")
        h = hashlib.sha256()
        try:
            files = sorted(
                p for p in self.path.rglob("*")
                if p.is_file() and not _IGNORED_DIRS.intersection(p.relative_to(self.path).parts)
            )
            for file in files:
                rel = file.relative_to(self.path).as_posix()
                h.update(rel.encode("utf-8"))
                h.update(b"\0")
                h.update(file.read_bytes())
                h.update(b"\0")
        except OSError as exc:
            raise SourceUnavailableError(f"Cannot read {self.describe()}: {exc}") from exc
        return h.hexdigest()

    def revision(self, length: int) -> str:
        return self.digest()[:length]


def resolve_revision(source: SourceProvider, length: int = DEFAULT_REVISION_LENGTH) -> str:
    """Resolve the revision id for ``source``.

    Raises ``SourceUnavailableError`` if the content cannot be read or the
    source returns something that is not a revision id.
    """
    if length < 4:
        raise ValueError("revision ids shorter than 4 characters are not unique enough")
    revision = source.revision(length)
    if not is_revision_id(revision):
        raise SourceUnavailableError(
            f"{source.describe()} returned an invalid revision id: {revision!r}"
        )
    logger.info("Resolved revision %s from %s", revision, source.describe())
    return revision
