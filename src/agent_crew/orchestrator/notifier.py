"""Change Notifier: side channel announcing task mutations to observers.

The store publishes after every committed mutation. Observers (dashboards)
either subscribe to a notifier or poll the queue status; the orchestration
core never consumes these messages itself.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from typing import Protocol

from redis import Redis

from agent_crew.orchestrator.models import TaskChange

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL_PREFIX = "agent_crew:tasks"

ChangeCallback = Callable[[TaskChange], None]


class ChangeNotifier(Protocol):
    """Protocol implemented by change notifiers."""

    def publish(self, change: TaskChange) -> None:
        """Announce one task mutation."""


class NullChangeNotifier:
    def publish(self, change: TaskChange) -> None:
        return None


class LoggingChangeNotifier:
    """Default notifier: writes each change to the log."""

    def publish(self, change: TaskChange) -> None:
        logger.info(
            "Task %s (business=%s) -> %s",
            change.task_id,
            change.business_id,
            change.new_status.value,
        )


class LocalChangeBus:
    """In-process publish/subscribe bus."""

    def __init__(self) -> None:
        self._subscribers: list[ChangeCallback] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register a callback; returns a function that removes it."""

        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, change: TaskChange) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(change)
            except Exception:  # noqa: BLE001
                logger.exception("Change subscriber failed for task %s", change.task_id)


class RedisChangeNotifier:
    """Publishes JSON change messages to a per-business Redis channel."""

    def __init__(self, client: Redis, *, channel_prefix: str = DEFAULT_CHANNEL_PREFIX) -> None:
        self._client = client
        self.channel_prefix = channel_prefix

    @classmethod
    def from_url(
        cls,
        redis_url: str,
        *,
        channel_prefix: str = DEFAULT_CHANNEL_PREFIX,
    ) -> RedisChangeNotifier:
        return cls(
            Redis.from_url(redis_url, decode_responses=True),
            channel_prefix=channel_prefix,
        )

    def channel_for(self, business_id: str) -> str:
        return f"{self.channel_prefix}:{business_id}"

    def publish(self, change: TaskChange) -> None:
        self._client.publish(
            self.channel_for(change.business_id),
            json.dumps(change.to_dict(), sort_keys=True),
        )

    def close(self) -> None:
        self._client.close()


def notify_safely(notifier: ChangeNotifier, change: TaskChange) -> None:
    """Publish without letting a broken side channel affect the caller."""

    try:
        notifier.publish(change)
    except Exception as error:  # noqa: BLE001
        logger.warning(
            "Change notification failed for task %s (%s): %s",
            change.task_id,
            change.new_status.value,
            error,
        )
