"""Durable job scheduling for the capture pipeline."""

from .dispatch import DispatchError, DispatchStats, JobHandle, JobHandler, JobScheduler
from .handlers import CaptureJobHandlers

__all__ = [
    "CaptureJobHandlers",
    "DispatchError",
    "DispatchStats",
    "JobHandle",
    "JobHandler",
    "JobScheduler",
]
