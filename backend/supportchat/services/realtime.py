"""In-process fan-out of conversation events to subscribed connections.

A connection is anything with an async ``send_json`` method, in practice a
Starlette ``WebSocket``. Topics are conversation ids. ``publish`` never awaits
delivery: each send runs in its own task so a slow or dead client cannot hold
up the request that produced the event.
"""

import asyncio
import logging
import threading
from typing import Any, Dict, Optional, Set
from starlette.requests import HTTPConnection

from supportchat.schemas.message import RealtimeEvent

logger = logging.getLogger(__name__)

EVENT_NEW_MESSAGE = "newMessage"
EVENT_MESSAGE_UPDATED = "messageUpdated"
EVENT_MESSAGE_DELETED = "messageDeleted"
EVENT_MESSAGE_REACTION = "messageReaction"
EVENT_KINDS = (
    EVENT_NEW_MESSAGE,
    EVENT_MESSAGE_UPDATED,
    EVENT_MESSAGE_DELETED,
    EVENT_MESSAGE_REACTION,
)


class RealtimeHub:
    """Registry of conversation topics and their subscribed connections."""

    def __init__(self):
        self.topics: Dict[int, Set[Any]] = {}
        # connection -> user id, for dropping a user's sockets when membership ends
        self.owners: Dict[Any, int] = {}
        self.lock = threading.Lock()
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, connection, conversation_id: int, user_id: Optional[int] = None) -> None:
        with self.lock:
            self.topics.setdefault(conversation_id, set()).add(connection)
            if user_id is not None:
                self.owners[connection] = user_id
        logger.debug(f"Connection {id(connection)} joined conversation {conversation_id}")

    def unsubscribe(self, connection, conversation_id: int) -> None:
        with self.lock:
            self._discard(conversation_id, connection)
        logger.debug(f"Connection {id(connection)} left conversation {conversation_id}")

    def disconnect(self, connection) -> None:
        """Drop ``connection`` from every topic."""
        with self.lock:
            for conversation_id in list(self.topics):
                self._discard(conversation_id, connection)
            self.owners.pop(connection, None)

    def drop_user(self, conversation_id: int, user_id: int) -> int:
        """Unsubscribe every connection of ``user_id`` from the topic.

        Called once the user is no longer a member. Returns how many
        connections were dropped.
        """
        with self.lock:
            dropped = [
                connection for connection in self.topics.get(conversation_id, ())
                if self.owners.get(connection) == user_id
            ]
            for connection in dropped:
                self._discard(conversation_id, connection)
        if dropped:
            logger.info(
                f"Dropped {len(dropped)} connection(s) of user {user_id} from conversation {conversation_id}"
            )
        return len(dropped)

    def drop_topic(self, conversation_id: int) -> int:
        """Forget a topic entirely; returns how many connections it had."""
        with self.lock:
            subscribers = self.topics.pop(conversation_id, set())
        if subscribers:
            logger.info(f"Closed topic of conversation {conversation_id} with {len(subscribers)} subscriber(s)")
        return len(subscribers)

    def _discard(self, conversation_id: int, connection) -> None:
        # caller holds the lock
        subscribers = self.topics.get(conversation_id)
        if subscribers is not None:
            subscribers.discard(connection)
            if not subscribers:
                del self.topics[conversation_id]

    def subscribers(self, conversation_id: int) -> Set[Any]:
        with self.lock:
            return set(self.topics.get(conversation_id, ()))

    def publish(self, conversation_id: int, kind: str, payload: dict) -> int:
        """Schedule delivery of one event to every subscriber of the topic.

        Must be called from a running event loop. Returns the number of
        deliveries scheduled.
        """
        if kind not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind: {kind}")

        event = RealtimeEvent(
            kind=kind, conversation_id=conversation_id, payload=payload
        ).model_dump(mode="json")
        targets = self.subscribers(conversation_id)
        if not targets:
            return 0

        loop = asyncio.get_running_loop()
        for connection in targets:
            task = loop.create_task(self._deliver(conversation_id, connection, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        logger.debug(f"Published {kind} to {len(targets)} subscriber(s) of conversation {conversation_id}")
        return len(targets)

    async def _deliver(self, conversation_id: int, connection, event: dict) -> None:
        try:
            await connection.send_json(event)
        except Exception as e:
            logger.warning(
                f"Dropping connection {id(connection)} from conversation {conversation_id}: {e}"
            )
            self.unsubscribe(connection, conversation_id)

    async def close(self) -> None:
        """Wait for outstanding deliveries, then forget all subscriptions."""
        pending = list(self._pending)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        with self.lock:
            self.topics.clear()
            self.owners.clear()
        logger.info(f"Realtime hub closed after flushing {len(pending)} delivery task(s)")


def get_realtime_hub(conn: HTTPConnection) -> RealtimeHub:
    """Dependency returning the hub created for the running application."""
    return conn.app.state.realtime_hub
