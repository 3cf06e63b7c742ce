"""In-process live event bus feeding the /api/events SSE stream.

One process-wide EventBus. Each open SSE connection subscribes with its
user id and gets a bounded queue; publish() fans an event out to every
queue belonging to that user. Nothing is persisted or replayed: a client
that is not connected when an event fires never sees it.
"""

import logging
import queue
import threading

logger = logging.getLogger(__name__)

SUBSCRIBER_QUEUE_SIZE = 100


class Subscription:
    """Handle returned by EventBus.subscribe(); iterate with get()."""

    def __init__(self, bus, user_id):
        self.bus = bus
        self.user_id = user_id
        self.queue = queue.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)

    def get(self, timeout=None):
        """Next event for this subscriber, or None on timeout."""
        try:
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self):
        self.bus.unsubscribe(self)


class EventBus:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers = {}

    def subscribe(self, user_id):
        sub = Subscription(self, user_id)
        with self._lock:
            self._subscribers.setdefault(user_id, []).append(sub)
        logger.debug(f"SSE subscriber added for user {user_id}")
        return sub

    def unsubscribe(self, sub):
        with self._lock:
            subs = self._subscribers.get(sub.user_id, [])
            if sub in subs:
                subs.remove(sub)
            if not subs:
                self._subscribers.pop(sub.user_id, None)
        logger.debug(f"SSE subscriber removed for user {sub.user_id}")

    def publish(self, user_id, payload):
        """Deliver payload to every live subscriber of user_id.

        Returns the number of queues that accepted it. A full queue (a
        stalled browser tab) drops the event rather than blocking the
        request that published it.
        """
        with self._lock:
            subs = list(self._subscribers.get(user_id, []))

        delivered = 0
        for sub in subs:
            try:
                sub.queue.put_nowait(payload)
                delivered += 1
            except queue.Full:
                logger.warning(f"Dropping live event for user {user_id}: queue full")
        return delivered

    def subscriber_count(self, user_id=None):
        with self._lock:
            if user_id is not None:
                return len(self._subscribers.get(user_id, []))
            return sum(len(s) for s in self._subscribers.values())


event_bus = EventBus()
