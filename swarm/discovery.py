"""Per-topic connection pool exposed by the swarm."""

import asyncio
from typing import Dict, List, Optional

from common.logging_config import get_logger
from swarm.connection import PeerConnection

logger = get_logger(__name__)


class Discovery:
    """
    Live connections for one joined topic.

    Consumers read the current pool through `connections` and learn about
    later connections through a subscription queue. A None item on a
    subscription queue means the pool was closed.
    """

    def __init__(self, topic: bytes):
        self.topic = topic
        self._connections: Dict[str, PeerConnection] = {}
        self._subscribers: List[asyncio.Queue] = []
        self._watchers: Dict[str, asyncio.Task] = {}
        self.closed = False

    @property
    def topic_hex(self) -> str:
        return self.topic.hex()

    @property
    def connections(self) -> List[PeerConnection]:
        """Snapshot of connections that are not closed."""
        return [c for c in self._connections.values() if not c.is_closed]

    def find_peer(self, peer_id: str) -> Optional[PeerConnection]:
        for conn in self.connections:
            if conn.peer_id == peer_id:
                return conn
        return None

    def add(self, connection: PeerConnection) -> None:
        """
        Register a connection and announce it to subscribers.

        The connection is dropped from the pool automatically once closed.
        """
        if self.closed:
            connection.close()
            return

        self._connections[connection.connection_id] = connection
        self._watchers[connection.connection_id] = asyncio.create_task(
            self._watch(connection)
        )
        logger.info(f"Peer {connection.short_peer_id} joined topic={self.topic_hex} ({connection.connection_id})")

        for queue in list(self._subscribers):
            queue.put_nowait(connection)

    def remove(self, connection: PeerConnection) -> None:
        if self._connections.pop(connection.connection_id, None) is not None:
            logger.info(f"Peer {connection.short_peer_id} left ({connection.connection_id})")
        watcher = self._watchers.pop(connection.connection_id, None)
        if watcher is not None and watcher is not asyncio.current_task():
            watcher.cancel()

    def subscribe(self) -> asyncio.Queue:
        """Return a queue that receives every connection added from now on."""
        queue: asyncio.Queue = asyncio.Queue()
        if self.closed:
            queue.put_nowait(None)
        else:
            self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    async def _watch(self, connection: PeerConnection) -> None:
        await connection.wait_closed()
        self.remove(connection)

    async def close(self) -> None:
        """Close every connection and end all subscriptions."""
        self.closed = True
        for queue in self._subscribers:
            queue.put_nowait(None)
        self._subscribers.clear()

        for connection in list(self._connections.values()):
            connection.close()
        watchers = list(self._watchers.values())
        for watcher in watchers:
            watcher.cancel()
        await asyncio.gather(*watchers, return_exceptions=True)
        self._watchers.clear()
        self._connections.clear()
