"""Core domain models for httprunner.

These models describe what flows between the runner and the HTTP layer:
the lifecycle state of one streamed run and the read-only view of a
tracked process used for listings.
"""

from __future__ import annotations

import enum
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from httprunner.utils.timefmt import format_rfc3339


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class StreamState(str, enum.Enum):
    """Lifecycle of a single run request."""

    STARTING = "starting"  # Rate limit check, spawn and registration
    STREAMING = "streaming"  # Draining output into the response
    FINISHED = "finished"  # Response complete; the process may still run


# ---------------------------------------------------------------------------
# Process views
# ---------------------------------------------------------------------------


class ProcessInfo(BaseModel):
    """Snapshot of one tracked process, as shown by the listing endpoint."""

    model_config = ConfigDict(frozen=True)

    started_at: datetime = Field(description="When the process was started")
    sequence: int = Field(ge=0, description="Spawn counter, breaks timestamp ties")
    pid: int = Field(description="OS process identifier")
    command: str = Field(default="", description="Program that was started")

    def format_line(self) -> str:
        """Render as ``<RFC3339 start time> : <pid>``."""
        return f"{format_rfc3339(self.started_at)} : {self.pid}"
