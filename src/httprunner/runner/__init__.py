"""Process execution and output streaming for httprunner.

Provides the capture buffer, the spawn rate limiter, the process registry,
the command executor and the per-request streaming driver.
"""

from httprunner.runner.buffer import DEFAULT_CAPTURE_LIMIT, CaptureBuffer
from httprunner.runner.executor import (
    CommandExecutor,
    RateLimitedError,
    RunnerError,
    RunningCommand,
    SpawnError,
)
from httprunner.runner.limiter import RateLimiter
from httprunner.runner.registry import ManagedProcess, ProcessKey, ProcessRegistry
from httprunner.runner.streaming import NO_OUTPUT_MESSAGE, OutputStreamer

__all__ = [
    "DEFAULT_CAPTURE_LIMIT",
    "NO_OUTPUT_MESSAGE",
    "CaptureBuffer",
    "CommandExecutor",
    "ManagedProcess",
    "OutputStreamer",
    "ProcessKey",
    "ProcessRegistry",
    "RateLimitedError",
    "RateLimiter",
    "RunnerError",
    "RunningCommand",
    "SpawnError",
]
