"""
Event bus for hostwatch.

This module provides event-driven notifications with:
- Publish/subscribe pattern
- Sync and async handlers
- Event filtering by kind or predicate
- Bounded in-memory history for diagnostics

Delivery is best-effort: a handler that raises is logged and skipped, and
subscribers that register late miss earlier events.
"""

from typing import TYPE_CHECKING, Optional, Any, List, Callable, Set, Union, Iterable
from dataclasses import dataclass
from datetime import datetime
import asyncio
import inspect

from .logging import get_logger

if TYPE_CHECKING:
    from ..monitor.events import MonitorEvent, MonitorEventKind


logger = get_logger("hostwatch.notifications")

Handler = Callable[["MonitorEvent"], Any]


@dataclass(eq=False)
class Subscription:
    """Event subscription."""
    handler: Handler
    kinds: Optional[Set["MonitorEventKind"]] = None
    is_async: bool = True
    filter_func: Optional[Callable[["MonitorEvent"], bool]] = None

    def matches(self, event: "MonitorEvent") -> bool:
        """Check if subscription matches event."""
        if self.kinds and event.kind not in self.kinds:
            return False

        if self.filter_func and not self.filter_func(event):
            return False

        return True


def _handler_name(handler: Handler) -> str:
    return getattr(handler, '__name__', repr(handler))


def _is_coroutine_handler(handler: Handler) -> bool:
    # covers objects whose __call__ is async def
    return inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(
        getattr(handler, "__call__", None)
    )


class EventBus:
    """Publish/subscribe registry for monitor events."""

    def __init__(self, max_history: int = 1000):
        self._subscriptions: List[Subscription] = []
        self._event_history: List["MonitorEvent"] = []
        self._max_history = max_history

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(
        self,
        handler: Handler,
        kinds: Optional[Union["MonitorEventKind", Iterable["MonitorEventKind"]]] = None,
        filter_func: Optional[Callable[["MonitorEvent"], bool]] = None,
        is_async: Optional[bool] = None
    ) -> Subscription:
        """
        Subscribe to events.

        Args:
            handler: Event handler, sync or async
            kinds: Event kinds to receive (all kinds if None)
            filter_func: Custom filter function
            is_async: Whether handler is async (auto-detected if None)

        Returns:
            Subscription object, pass it to unsubscribe()
        """
        if kinds is not None:
            # MonitorEventKind is a str enum, so a single kind is iterable
            kinds = {kinds} if isinstance(kinds, str) else set(kinds)

        if is_async is None:
            is_async = _is_coroutine_handler(handler)

        subscription = Subscription(
            handler=handler,
            kinds=kinds or None,
            is_async=is_async,
            filter_func=filter_func
        )
        self._subscriptions.append(subscription)

        logger.debug(
            "subscription_added",
            kinds=sorted(k.value for k in kinds) if kinds else None,
            handler=_handler_name(handler)
        )

        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """
        Unsubscribe from events.

        Returns:
            True if removed, False if not found
        """
        try:
            self._subscriptions.remove(subscription)
            logger.debug("subscription_removed", handler=_handler_name(subscription.handler))
            return True
        except ValueError:
            return False

    async def publish(self, event: "MonitorEvent") -> None:
        """
        Deliver an event to every matching subscriber.

        Handlers run in subscription order; async handlers are awaited
        together. Handler failures never reach the publisher.
        """
        self._add_to_history(event)

        # Copy so handlers may unsubscribe while being dispatched
        subscriptions = [s for s in list(self._subscriptions) if self._safe_matches(s, event)]

        if not subscriptions:
            logger.debug("no_subscribers", kind=event.kind.value)
            return

        tasks = []
        for subscription in subscriptions:
            if subscription.is_async:
                tasks.append(self._call_async_handler(subscription.handler, event))
            else:
                self._call_sync_handler(subscription.handler, event)

        if tasks:
            await asyncio.gather(*tasks)

    def _safe_matches(self, subscription: Subscription, event: "MonitorEvent") -> bool:
        try:
            return subscription.matches(event)
        except Exception as e:
            logger.error(
                "subscription_filter_error",
                handler=_handler_name(subscription.handler),
                kind=event.kind.value,
                error=str(e)
            )
            return False

    async def _call_async_handler(self, handler: Handler, event: "MonitorEvent") -> None:
        """Call async event handler."""
        try:
            await handler(event)
        except Exception as e:
            logger.error(
                "async_handler_error",
                handler=_handler_name(handler),
                kind=event.kind.value,
                error=str(e),
                exc_info=True
            )

    def _call_sync_handler(self, handler: Handler, event: "MonitorEvent") -> None:
        """Call sync event handler."""
        try:
            handler(event)
        except Exception as e:
            logger.error(
                "sync_handler_error",
                handler=_handler_name(handler),
                kind=event.kind.value,
                error=str(e),
                exc_info=True
            )

    def _add_to_history(self, event: "MonitorEvent") -> None:
        self._event_history.append(event)

        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history:]

    def get_history(
        self,
        kind: Optional["MonitorEventKind"] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List["MonitorEvent"]:
        """
        Get event history.

        Args:
            kind: Filter by event kind
            since: Filter by timestamp
            limit: Maximum events to return (most recent)
        """
        events = self._event_history

        if kind:
            events = [e for e in events if e.kind == kind]

        if since:
            events = [e for e in events if e.timestamp >= since]

        if limit:
            events = events[-limit:]

        return list(events)

    async def wait_for(
        self,
        kind: "MonitorEventKind",
        timeout: Optional[float] = None,
        filter_func: Optional[Callable[["MonitorEvent"], bool]] = None
    ) -> Optional["MonitorEvent"]:
        """
        Wait for the next event of a kind.

        Returns:
            Event if received, None on timeout
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def handler(event: "MonitorEvent") -> None:
            if not future.done():
                future.set_result(event)

        subscription = self.subscribe(
            handler=handler,
            kinds=[kind],
            filter_func=filter_func,
            is_async=False
        )

        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            self.unsubscribe(subscription)

    async def shutdown(self) -> None:
        """Drop all subscriptions and history."""
        self._subscriptions.clear()
        self._event_history.clear()

        logger.info("event_bus_shutdown")


__all__ = [
    'EventBus',
    'Subscription',
]
