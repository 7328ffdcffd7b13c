"""Progress aggregation and notification channels."""

from .aggregator import GroupProgress, ProgressAggregator
from .notifications import (
    InMemoryNotificationChannel,
    NotificationChannel,
    ProgressEventType,
    ProgressPublisher,
    RedisNotificationChannel,
    owner_channel,
)

__all__ = [
    "GroupProgress",
    "ProgressAggregator",
    "InMemoryNotificationChannel",
    "NotificationChannel",
    "ProgressEventType",
    "ProgressPublisher",
    "RedisNotificationChannel",
    "owner_channel",
]
