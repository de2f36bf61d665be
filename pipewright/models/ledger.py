"""Run Ledger entry model (append-only, hash-chained).

One entry per task state transition or promotion step.  Entries are
scoped to ``run_id`` + ``subject`` (a task name, or ``promote:<app>``).
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntry(BaseModel):
    """A single entry in the append-only Run Ledger."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    subject: str
    state_transition: str  # "from_state->to_state", e.g. "pending->running"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    input_hash: str = ""  # SHA-256 of canonical resolved params
    output_hash: str = ""  # SHA-256 of canonical published results
    exit_code: int | None = None
    message: str = ""
    pipeline_version: str = "0.1.0"
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed on append, seals this entry
