"""Room chat over the chat topic's connection pool."""

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from common.constants import DEFAULT_NICK
from common.exceptions import ConnectionBusyError, ProtocolError
from common.logging_config import get_logger
from common.protocol import ChatMessage, encode_frame, parse_message, read_frame
from transfer.coordinator import ConnectionClassifier

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChatDelivery:
    """A chat message as it lands in the inbox."""
    message: ChatMessage
    connection_id: Optional[str] = None
    peer_id: str = ""

    @property
    def local(self) -> bool:
        """True for the local echo of our own broadcast."""
        return self.connection_id is None


class ChatDispatcher:
    """
    Reads chat frames from peer connections and broadcasts local messages.

    Frames that are not valid CHAT messages are dropped without error, as
    are frames read from a connection currently claimed by a transfer.
    """

    def __init__(
        self,
        classifier: Optional[ConnectionClassifier] = None,
        nick: str = DEFAULT_NICK,
        inbox: Optional[asyncio.Queue] = None
    ):
        """
        Initialize dispatcher.

        Args:
            classifier: Role registry shared with the transfer coordinator
            nick: Nickname stamped on outgoing messages
            inbox: Queue receiving ChatDeliveries, a private one when omitted
        """
        self.classifier = classifier or ConnectionClassifier()
        self.nick = nick
        self.inbox: asyncio.Queue = inbox if inbox is not None else asyncio.Queue()
        self._connections: Dict[str, object] = {}
        self._readers: Dict[str, asyncio.Task] = {}
        self._followers: List[asyncio.Task] = []

    @property
    def connections(self) -> list:
        """Attached connections that are still open."""
        return [c for c in self._connections.values() if not c.is_closed]

    def attach(self, connection) -> bool:
        """
        Start reading chat frames from a connection.

        Returns:
            True if a reader was attached, False if the connection is closed,
            already attached, or owned by a transfer
        """
        cid = connection.connection_id
        if connection.is_closed or cid in self._readers:
            return False
        try:
            self.classifier.mark_chat(connection)
        except ConnectionBusyError as e:
            logger.warning(f"Not attaching chat to {cid}: {e}")
            return False

        self._connections[cid] = connection
        self._readers[cid] = asyncio.create_task(self._read_loop(connection))
        logger.debug(f"Chat reader attached to {cid}")
        return True

    def follow(self, discovery) -> None:
        """Attach to every current and future connection of a pool."""
        queue = discovery.subscribe()
        for connection in discovery.connections:
            self.attach(connection)
        self._followers.append(asyncio.create_task(self._follow(discovery, queue)))

    async def _follow(self, discovery, queue: asyncio.Queue) -> None:
        try:
            while True:
                connection = await queue.get()
                if connection is None:
                    break
                self.attach(connection)
        finally:
            discovery.unsubscribe(queue)

    async def _read_loop(self, connection) -> None:
        cid = connection.connection_id
        try:
            while True:
                try:
                    body = await read_frame(connection)
                except ProtocolError as e:
                    logger.warning(f"Stopped reading chat from {cid}: {e}")
                    break
                except (ConnectionError, OSError) as e:
                    logger.debug(f"Chat connection {cid} failed: {e}")
                    break

                if body is None:
                    logger.debug(f"Chat peer on {cid} closed the stream")
                    connection.close()
                    break

                if self.classifier.is_transfer(connection):
                    continue

                message = parse_message(body)
                if not isinstance(message, ChatMessage):
                    continue

                self.inbox.put_nowait(ChatDelivery(message, cid, connection.peer_id))
        finally:
            self.classifier.unmark_chat(connection)
            self._readers.pop(cid, None)
            self._connections.pop(cid, None)

    async def broadcast(self, text: str) -> Optional[ChatMessage]:
        """
        Send a chat line to every attached peer.

        The message is echoed to the local inbox first. A failed write to one
        peer is logged and does not stop delivery to the others.

        Returns:
            The message sent, or None for empty text

        Raises:
            ProtocolError: If the message does not fit in one frame
        """
        if not text or not text.strip():
            return None

        message = ChatMessage(nick=self.nick, text=text, timestamp=int(time.time() * 1000))
        frame = encode_frame(message)
        self.inbox.put_nowait(ChatDelivery(message))

        targets = [c for c in self.connections if not self.classifier.is_transfer(c)]
        await asyncio.gather(*(self._send(c, frame) for c in targets))
        logger.debug(f"Chat broadcast to {len(targets)} peer(s)")
        return message

    async def _send(self, connection, frame: bytes) -> None:
        try:
            await connection.write(frame)
        except (ConnectionError, OSError) as e:
            logger.warning(f"Chat write to {connection.connection_id} failed: {e}")

    async def close(self) -> None:
        """Stop every reader and follower."""
        tasks = list(self._readers.values()) + self._followers
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._readers.clear()
        self._followers.clear()
        self._connections.clear()
