"""Process execution layer for compiler and auxiliary tool runs."""

from .runner import (
    CmdResult,
    ExecutionFailure,
    MTIME_RESOLUTION_MS,
    ProcessRunner,
    SuccessPolicy,
    reproducible_env,
)

__all__ = [
    "CmdResult",
    "ExecutionFailure",
    "MTIME_RESOLUTION_MS",
    "ProcessRunner",
    "SuccessPolicy",
    "reproducible_env",
]
