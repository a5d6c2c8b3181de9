"""TCP connection substrate: a listener plus static peers redialed on a loop.

Each TCP connection starts with a 64-byte preamble in both directions:
the 32-byte topic followed by the sender's 32-byte peer key. Connections
for topics that were not joined are closed. There is no discovery, NAT
traversal or transport security here.
"""

import asyncio
import os
from typing import Dict, List, Optional, Tuple

from common.constants import (
    DEFAULT_RECONNECT_INTERVAL_SECONDS,
    PEER_KEY_LENGTH_BYTES,
    SWARM_PREAMBLE_BYTES,
    SWARM_PREAMBLE_TIMEOUT_SECONDS,
    TOPIC_LENGTH_BYTES,
)
from common.logging_config import get_logger
from swarm.connection import PeerConnection
from swarm.discovery import Discovery

logger = get_logger(__name__)


def parse_address(address: str) -> Tuple[str, int]:
    """
    Parse "HOST:PORT" into its parts.

    Raises:
        ValueError: If the port is missing or not a number
    """
    host, sep, port = address.rpartition(':')
    if not sep or not host:
        raise ValueError(f"Address must be HOST:PORT, got {address!r}")
    return host.strip('[]'), int(port)


class TcpSwarm:
    """
    Maintains one listener and one connection pool per joined topic.

    All topics share the same local peer key, so the chat and file channels
    of a room appear to remote peers as the same identity.
    """

    def __init__(
        self,
        listen_host: str,
        listen_port: int,
        peers: Optional[List[str]] = None,
        reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL_SECONDS,
        peer_key: Optional[bytes] = None
    ):
        """
        Initialize swarm.

        Args:
            listen_host: Interface to accept connections on
            listen_port: Port to accept connections on (0 picks a free port)
            peers: Static "HOST:PORT" addresses to dial for every joined topic
            reconnect_interval: Seconds between redial rounds
            peer_key: Local identity, random when omitted
        """
        self.listen_host = listen_host
        self.listen_port = listen_port
        self.peers: List[str] = list(peers or [])
        self.reconnect_interval = reconnect_interval
        self.peer_key = peer_key or os.urandom(PEER_KEY_LENGTH_BYTES)

        self.topics: Dict[bytes, Discovery] = {}
        self._server: Optional[asyncio.AbstractServer] = None
        self._dial_task: Optional[asyncio.Task] = None
        self._dialing: set = set()
        self._handshakes: set = set()
        self._address_keys: Dict[str, str] = {}
        self.running = False

    @property
    def peer_id(self) -> str:
        return self.peer_key.hex()

    @property
    def bound_port(self) -> int:
        """Actual listening port (useful when constructed with port 0)."""
        if self._server and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return self.listen_port

    async def start(self) -> None:
        """Start listening and the redial loop."""
        if self.running:
            return
        self.running = True
        self._server = await asyncio.start_server(
            self._on_accept, self.listen_host, self.listen_port
        )
        self._dial_task = asyncio.create_task(self._dial_loop())
        logger.info(
            f"Swarm listening on {self.listen_host}:{self.bound_port} "
            f"peer_key={self.peer_id} ({len(self.peers)} static peer(s))"
        )

    async def join(self, topic: bytes) -> Discovery:
        """
        Join a topic and dial the static peers for it right away.

        Returns:
            The topic's connection pool
        """
        if len(topic) != TOPIC_LENGTH_BYTES:
            raise ValueError(f"Topic must be {TOPIC_LENGTH_BYTES} bytes, got {len(topic)}")

        discovery = self.topics.get(topic)
        if discovery is None:
            discovery = Discovery(topic)
            self.topics[topic] = discovery
            logger.info(f"Joined topic={topic.hex()}")
        await self._dial_round()
        return discovery

    async def leave(self, topic: bytes) -> None:
        discovery = self.topics.pop(topic, None)
        if discovery is not None:
            await discovery.close()
            logger.info(f"Left topic={topic.hex()}")

    def add_peer(self, address: str) -> None:
        parse_address(address)
        if address not in self.peers:
            self.peers.append(address)

    async def destroy(self) -> None:
        """Stop listening, stop redialing and close every pool."""
        self.running = False
        if self._dial_task:
            self._dial_task.cancel()
            await asyncio.gather(self._dial_task, return_exceptions=True)
            self._dial_task = None

        for topic in list(self.topics):
            await self.leave(topic)

        pending = list(self._handshakes)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        if self._server:
            self._server.close()
            self._server = None
        logger.info("Swarm destroyed")

    async def _dial_loop(self) -> None:
        """Periodically redial peers missing from a joined topic."""
        while self.running:
            try:
                await asyncio.sleep(self.reconnect_interval)
                await self._dial_round()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Dial loop error: {e}", exc_info=True)

    async def _dial_round(self) -> None:
        if not self.running:
            return
        tasks = [
            self._dial(address, topic)
            for topic in list(self.topics)
            for address in self.peers
            if (address, topic) not in self._dialing
        ]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _dial(self, address: str, topic: bytes) -> None:
        discovery = self.topics.get(topic)
        if discovery is None:
            return
        known_key = self._address_keys.get(address)
        if known_key and discovery.find_peer(known_key) is not None:
            return

        self._dialing.add((address, topic))
        writer = None
        try:
            host, port = parse_address(address)
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=SWARM_PREAMBLE_TIMEOUT_SECONDS
            )
            connection = await self._exchange_preamble(reader, writer, initiator=True, topic=topic)
            if connection is not None:
                connection.address = address
                self._address_keys[address] = connection.peer_id
                self._register(connection, topic)
        except (OSError, asyncio.TimeoutError, asyncio.IncompleteReadError, ValueError) as e:
            logger.debug(f"Dial {address} topic={topic.hex()} failed: {e}")
            if writer is not None:
                writer.close()
        finally:
            self._dialing.discard((address, topic))

    async def _on_accept(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.current_task()
        self._handshakes.add(task)
        try:
            connection = await self._exchange_preamble(reader, writer, initiator=False)
            if connection is not None:
                self._register(connection, connection.topic)
        except (OSError, asyncio.TimeoutError, asyncio.IncompleteReadError) as e:
            logger.debug(f"Inbound preamble failed: {e}")
            writer.close()
        finally:
            self._handshakes.discard(task)

    async def _exchange_preamble(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        initiator: bool,
        topic: Optional[bytes] = None
    ) -> Optional[PeerConnection]:
        """
        Swap topic and peer key with the remote side.

        The dialing side announces its topic first; the accepting side only
        answers for topics it has joined.
        """
        if initiator:
            writer.write(topic + self.peer_key)
            await writer.drain()

        preamble = await asyncio.wait_for(
            reader.readexactly(SWARM_PREAMBLE_BYTES),
            timeout=SWARM_PREAMBLE_TIMEOUT_SECONDS
        )
        remote_topic = preamble[:TOPIC_LENGTH_BYTES]
        remote_key = preamble[TOPIC_LENGTH_BYTES:]

        if initiator and remote_topic != topic:
            logger.warning("Peer answered with a different topic, dropping connection")
            writer.close()
            return None

        if not initiator:
            if remote_topic not in self.topics:
                logger.debug(f"Rejecting connection for unjoined topic={remote_topic.hex()}")
                writer.close()
                return None
            writer.write(remote_topic + self.peer_key)
            await writer.drain()

        if remote_key == self.peer_key:
            logger.debug("Dropping connection to self")
            writer.close()
            return None

        return PeerConnection(
            reader, writer, peer_id=remote_key.hex(), initiator=initiator, topic=remote_topic
        )

    def _register(self, connection: PeerConnection, topic: bytes) -> None:
        """
        Add a connection to its topic pool, resolving duplicates.

        When both sides dial each other, both keep the connection that was
        dialed by the peer with the smaller key.
        """
        discovery = self.topics.get(topic)
        if discovery is None:
            connection.close()
            return

        existing = discovery.find_peer(connection.peer_id)
        if existing is not None:
            local_is_smaller = self.peer_key.hex() < connection.peer_id
            preferred_initiator = local_is_smaller
            if connection.initiator == preferred_initiator and existing.initiator != preferred_initiator:
                logger.debug(f"Replacing duplicate connection {existing.connection_id}")
                existing.close()
            else:
                logger.debug(f"Dropping duplicate connection {connection.connection_id}")
                connection.close()
                return

        discovery.add(connection)
