"""Refresh scheduling for foreground and background passes."""

from ratealerts.scheduling.background import (
    BackgroundStatus,
    BaseBackgroundExecutor,
    ExecutionWindow,
    LocalBackgroundExecutor,
)
from ratealerts.scheduling.scheduler import RefreshScheduler

__all__ = [
    "BackgroundStatus",
    "BaseBackgroundExecutor",
    "ExecutionWindow",
    "LocalBackgroundExecutor",
    "RefreshScheduler",
]
