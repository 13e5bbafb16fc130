"""
Event Bus for application-wide event handling.

Typed channels replace string event names: a handler subscribed to a
channel always receives that channel's payload type.
"""
import itertools
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from portal_client.models.refresh import RefreshRequest
from portal_client.utils.logger import logger

T = TypeVar("T")


class Channel(Generic[T]):
    """A named, typed pub/sub topic."""

    def __init__(self, name: str):
        self.name = name

    def __repr__(self):
        return f"Channel({self.name!r})"


@dataclass(frozen=True)
class Subscription:
    """Token returned by ``subscribe``; pass it to ``unsubscribe``."""
    channel: str
    token: int


class Channels:
    """Channels defined by the session core."""

    LOADING_STATE_CHANGED: Channel[bool] = Channel("loading-state-changed")
    GLOBAL_REFRESH_REQUESTED: Channel[RefreshRequest] = Channel("global-refresh-requested")


_MISSING = object()


class EventBus:
    """
    Synchronous broadcast bus.

    Every handler subscribed at the time of ``emit`` is invoked, in
    subscription order, before ``emit`` returns. There is no queue and no
    replay; the bus only remembers the last value emitted per channel.
    """

    def __init__(self):
        """Initialize the event bus."""
        self._subscribers: Dict[str, List[Tuple[int, Callable[[Any], None]]]] = {}
        self._last_values: Dict[str, Any] = {}
        self._counter = itertools.count(1)
        self._lock = Lock()

    def subscribe(self, channel: Channel[T], handler: Callable[[T], None]) -> Subscription:
        """
        Subscribe to a channel.

        Args:
            channel: The channel to listen on
            handler: Called with the payload of each emit

        Returns:
            Subscription token for ``unsubscribe``
        """
        with self._lock:
            token = next(self._counter)
            self._subscribers.setdefault(channel.name, []).append((token, handler))
        logger.debug(f"Subscribed to channel: {channel.name}")
        return Subscription(channel=channel.name, token=token)

    def unsubscribe(self, subscription: Subscription) -> bool:
        """
        Remove a subscription.

        Returns:
            True if the subscription was active
        """
        with self._lock:
            handlers = self._subscribers.get(subscription.channel)
            if not handlers:
                return False
            for index, (token, _) in enumerate(handlers):
                if token == subscription.token:
                    del handlers[index]
                    if not handlers:
                        del self._subscribers[subscription.channel]
                    logger.debug(f"Unsubscribed from channel: {subscription.channel}")
                    return True
        return False

    def emit(self, channel: Channel[T], payload: T) -> None:
        """
        Deliver a payload to all current subscribers of a channel.

        A failing handler is logged and does not stop delivery to the rest.
        """
        with self._lock:
            handlers = list(self._subscribers.get(channel.name, []))
            self._last_values[channel.name] = payload

        logger.debug(f"Emitting on {channel.name} to {len(handlers)} subscribers")

        for _, handler in handlers:
            try:
                handler(payload)
            except Exception as e:
                logger.error(f"Error in event handler for {channel.name}: {e}")

    def last_value(self, channel: Channel[T], default: Optional[T] = None) -> Optional[T]:
        """Return the most recently emitted payload of a channel."""
        with self._lock:
            value = self._last_values.get(channel.name, _MISSING)
        return default if value is _MISSING else value

    def get_subscriber_count(self, channel: Channel[Any]) -> int:
        """Get the number of subscribers for a channel."""
        with self._lock:
            return len(self._subscribers.get(channel.name, []))

    def clear_subscribers(self, channel: Optional[Channel[Any]] = None) -> None:
        """
        Clear subscribers for one channel or for all channels.
        """
        with self._lock:
            if channel:
                self._subscribers.pop(channel.name, None)
            else:
                self._subscribers.clear()
