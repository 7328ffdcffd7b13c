"""Notification channels for progress events.

Components never talk to a transport directly: they receive a
``ProgressPublisher`` wrapping an injected ``NotificationChannel``. Every
publish is fire-and-forget, so a lost or failed event never affects the
capture state in the record store.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import redis.asyncio as redis

from ..models.capture import CaptureProgressEvent, GroupProgressEvent

logger = logging.getLogger(__name__)


class ProgressEventType:
    """Event names published on owner channels."""
    CAPTURE_PROGRESS = "capture-progress"
    GROUP_PROGRESS = "group-progress"
    GROUP_PROGRESS_CLEAR = "group-progress-clear"
    CRAWL_DISCOVERED = "crawl-discovered"


def owner_channel(owner_id: str) -> str:
    """Channel name for events addressed to one owner."""
    return f"user-{owner_id}"


class NotificationChannel(ABC):
    """Abstract transport for progress events."""

    @abstractmethod
    async def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        """Publish ``event`` with ``payload`` on ``channel``."""
        pass

    async def close(self) -> None:
        pass


class InMemoryNotificationChannel(NotificationChannel):
    """In-process channel with history and per-channel subscriber queues."""

    def __init__(self, history_limit: int = 1000):
        self.history: List[Tuple[str, str, Dict[str, Any]]] = []
        self.history_limit = history_limit
        self._subscribers: Dict[str, List[asyncio.Queue]] = defaultdict(list)

    async def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        self.history.append((channel, event, payload))
        if len(self.history) > self.history_limit:
            del self.history[0]

        for queue in self._subscribers.get(channel, []):
            queue.put_nowait((event, payload))

    def subscribe(self, channel: str) -> asyncio.Queue:
        """Get a queue receiving (event, payload) tuples for ``channel``."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers[channel].append(queue)
        return queue

    def unsubscribe(self, channel: str, queue: asyncio.Queue) -> None:
        if queue in self._subscribers.get(channel, []):
            self._subscribers[channel].remove(queue)

    def events(self, channel: Optional[str] = None, event: Optional[str] = None) -> List[Dict[str, Any]]:
        """Payloads from history, optionally filtered by channel and event name."""
        return [
            payload for ch, ev, payload in self.history
            if (channel is None or ch == channel) and (event is None or ev == event)
        ]


class RedisNotificationChannel(NotificationChannel):
    """Redis pub/sub transport; messages are JSON ``{event, payload}`` documents."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "webshot:",
        **redis_kwargs
    ):
        """Initialize Redis channel.

        Args:
            redis_url: Redis connection URL
            key_prefix: Prefix for pub/sub channel names
            **redis_kwargs: Additional Redis connection parameters
        """
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.redis_kwargs = redis_kwargs
        self._redis = None

    async def _get_redis(self):
        """Get Redis connection, creating if necessary."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, **self.redis_kwargs)
        return self._redis

    async def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        client = await self._get_redis()
        message = json.dumps({'event': event, 'payload': payload}, default=str)
        await client.publish(f"{self.key_prefix}{channel}", message)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


class ProgressPublisher:
    """Typed, failure-tolerant publishing on owner channels."""

    def __init__(self, channel: NotificationChannel):
        self.channel = channel

    async def publish_safely(self, owner_id: str, event: str, payload: Dict[str, Any]) -> bool:
        """Publish without ever raising; failures are logged and dropped."""
        try:
            await self.channel.publish(owner_channel(owner_id), event, payload)
            return True
        except Exception as e:
            logger.warning(f"Dropped {event} event for owner {owner_id}: {e}")
            return False

    async def capture_progress(self, owner_id: str, event: CaptureProgressEvent) -> bool:
        return await self.publish_safely(
            owner_id, ProgressEventType.CAPTURE_PROGRESS, event.model_dump(mode='json')
        )

    async def group_progress(self, owner_id: str, event: GroupProgressEvent) -> bool:
        return await self.publish_safely(
            owner_id, ProgressEventType.GROUP_PROGRESS, event.model_dump(mode='json')
        )

    async def group_progress_clear(self, owner_id: str, group_id: str) -> bool:
        return await self.publish_safely(
            owner_id,
            ProgressEventType.GROUP_PROGRESS_CLEAR,
            {'group_id': group_id, 'timestamp': datetime.now(timezone.utc).isoformat()},
        )

    async def crawl_discovered(self, owner_id: str, group_id: Optional[str], base_url: str, urls: List[str]) -> bool:
        return await self.publish_safely(
            owner_id,
            ProgressEventType.CRAWL_DISCOVERED,
            {'group_id': group_id, 'base_url': base_url, 'urls': urls, 'total': len(urls)},
        )
