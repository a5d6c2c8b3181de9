"""Peer connection wrapper over an asyncio stream pair."""

import asyncio
import itertools
from typing import Optional

from common.logging_config import get_logger

logger = get_logger(__name__)

_connection_ids = itertools.count(1)


class PeerConnection:
    """
    Ordered, bidirectional byte stream to one peer.

    Owned by the swarm; sessions and the chat dispatcher only read, write and
    close it. A connection is marked closed when close() is called or when a
    read or write fails. Reading EOF only means the peer half-closed.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        peer_id: str = "",
        initiator: bool = False,
        connection_id: Optional[str] = None,
        topic: Optional[bytes] = None,
        address: Optional[str] = None
    ):
        """
        Initialize connection wrapper.

        Args:
            reader: Stream reader of the underlying transport
            writer: Stream writer of the underlying transport
            peer_id: Hex identity of the remote peer (may be empty)
            initiator: True if this side dialed the connection
            connection_id: Explicit id, generated when omitted
            topic: Topic the connection was opened for
            address: Dialed "HOST:PORT" when this side is the initiator
        """
        self.reader = reader
        self.writer = writer
        self.peer_id = peer_id
        self.initiator = initiator
        self.connection_id = connection_id or f"conn-{next(_connection_ids)}"
        self.topic = topic
        self.address = address
        self._closed = asyncio.Event()
        self._eof_sent = False

    def __repr__(self) -> str:
        return f"PeerConnection({self.connection_id}, peer={self.short_peer_id})"

    @property
    def short_peer_id(self) -> str:
        return self.peer_id[:8] if self.peer_id else "unknown"

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    async def read(self, n: int) -> bytes:
        """
        Read up to n bytes.

        Returns:
            Data read, or b'' once the peer has half-closed the stream

        Raises:
            ConnectionError: If the transport failed
        """
        try:
            return await self.reader.read(n)
        except (ConnectionError, OSError):
            self._mark_closed()
            raise

    async def readexactly(self, n: int) -> bytes:
        """
        Read exactly n bytes.

        Raises:
            asyncio.IncompleteReadError: If the stream ends first
            ConnectionError: If the transport failed
        """
        try:
            return await self.reader.readexactly(n)
        except (ConnectionError, OSError):
            self._mark_closed()
            raise

    async def write(self, data: bytes) -> None:
        """
        Write data and wait for the outbound buffer to drain.

        Raises:
            ConnectionError: If the connection is closed or the transport failed
        """
        if self.is_closed or self.writer.is_closing():
            raise ConnectionResetError(f"{self.connection_id} is closed")
        try:
            self.writer.write(data)
            await self.writer.drain()
        except (ConnectionError, OSError):
            self._mark_closed()
            raise

    async def end(self) -> None:
        """Half-close: signal end-of-data while keeping the inbound side open."""
        if self._eof_sent or self.is_closed:
            return
        self._eof_sent = True
        if self.writer.can_write_eof():
            try:
                await self.writer.drain()
                self.writer.write_eof()
            except (ConnectionError, OSError) as e:
                logger.debug(f"{self.connection_id}: write_eof failed: {e}")
                self._mark_closed()
        else:
            self.close()

    def close(self) -> None:
        """Close both directions. Buffered outbound data is still flushed."""
        if not self.writer.is_closing():
            self.writer.close()
        self._mark_closed()

    async def wait_closed(self) -> None:
        """Wait until the connection has been closed by either side."""
        await self._closed.wait()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"{self.connection_id}: transport closed with error: {e}")

    def _mark_closed(self) -> None:
        if not self._closed.is_set():
            logger.debug(f"{self.connection_id} closed")
            self._closed.set()
