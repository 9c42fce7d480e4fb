"""
In-process change feed.
Backends publish a ChangeEvent after every successful write; dashboards and
caches subscribe per table and react to INSERT/UPDATE events.
"""

import inspect
from collections import defaultdict
from typing import Any, Awaitable, Callable, Union

import structlog

from models.records import ChangeEvent, ChangeType

logger = structlog.get_logger(__name__)

ChangeCallback = Callable[[ChangeEvent], Union[None, Awaitable[None]]]

# Subscribing to this table name receives events for every table
ALL_TABLES = "*"


class ChangeFeed:
    """Publish/subscribe fan-out of row changes."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[ChangeCallback]] = defaultdict(list)

    def subscribe(self, table: str, callback: ChangeCallback) -> Callable[[], None]:
        """
        Register a callback for changes on a table.

        Args:
            table: Table name, or ALL_TABLES for every table
            callback: Sync or async callable taking a ChangeEvent

        Returns:
            Callable that removes the subscription
        """
        self._subscribers[table].append(callback)
        logger.debug("change_feed_subscribed", table=table)

        def unsubscribe() -> None:
            try:
                self._subscribers[table].remove(callback)
            except ValueError:
                pass

        return unsubscribe

    def subscriber_count(self, table: str) -> int:
        return len(self._subscribers.get(table, []))

    async def publish(self, table: str, event_type: ChangeType, record: dict[str, Any]) -> None:
        """
        Deliver a change to every subscriber of the table.

        Subscriber failures are logged and never reach the writer.
        """
        event = ChangeEvent(table=table, event_type=event_type, record=record)
        callbacks = list(self._subscribers.get(table, [])) + list(self._subscribers.get(ALL_TABLES, []))

        for callback in callbacks:
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "change_feed_subscriber_error",
                    table=table,
                    event_type=event_type.value,
                    error=str(e),
                )
