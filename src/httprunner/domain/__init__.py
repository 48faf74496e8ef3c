"""Domain models for httprunner.

All models use Pydantic v2 for validation and serialization.
"""

from httprunner.domain.models import ProcessInfo, StreamState

__all__ = [
    "ProcessInfo",
    "StreamState",
]
