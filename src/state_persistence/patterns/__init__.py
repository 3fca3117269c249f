"""Scheduling patterns used by the save path."""

from state_persistence.patterns.debounce import (
    DebouncedSaveScheduler,
    SaveRequest,
    SchedulerMetrics,
)

__all__ = [
    "DebouncedSaveScheduler",
    "SaveRequest",
    "SchedulerMetrics",
]
