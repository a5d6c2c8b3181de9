"""Room context shared by the REPL and the one-shot subcommands."""

import asyncio
from typing import Dict, List, Optional

from chat.dispatcher import ChatDispatcher
from common.exceptions import NotInRoomError
from common.logging_config import get_logger
from common.protocol import ChatMessage
from common.topic import room_topics
from cli.config import Config
from cli.palette import NicknamePalette
from swarm.discovery import Discovery
from transfer.coordinator import (
    ConnectionClassifier,
    ReceiveCommand,
    SendCommand,
    TransferCoordinator,
)

logger = get_logger(__name__)


class RoomSession:
    """
    Membership in at most one room at a time.

    A room is two swarm topics derived from its secret: one pool for chat
    and one for file transfers. Both run on the same swarm and therefore
    under the same local peer identity.
    """

    def __init__(self, swarm, config: Config):
        """
        Initialize room session.

        Args:
            swarm: TcpSwarm (or compatible) providing topic pools
            config: CLI configuration
        """
        self.swarm = swarm
        self.config = config
        self.nick = config.get_nick()
        self.room: Optional[str] = None
        self.palette = NicknamePalette()
        self.classifier = ConnectionClassifier()
        self.inbox: asyncio.Queue = asyncio.Queue()

        self.chat_pool: Optional[Discovery] = None
        self.file_pool: Optional[Discovery] = None
        self.dispatcher: Optional[ChatDispatcher] = None
        self.transfers: Optional[TransferCoordinator] = None

    @property
    def in_room(self) -> bool:
        return self.room is not None

    def _require_room(self) -> None:
        if not self.in_room:
            raise NotInRoomError("Join a room first with /host <room>")

    async def host(self, room: str) -> None:
        """
        Join a room, leaving the current one first.

        Args:
            room: Room secret
        """
        if self.in_room:
            await self.leave()

        chat_topic, file_topic = room_topics(room)
        if not self.swarm.running:
            await self.swarm.start()

        self.chat_pool = await self.swarm.join(chat_topic)
        self.file_pool = await self.swarm.join(file_topic)
        self.room = room
        self.palette = NicknamePalette()

        self.dispatcher = ChatDispatcher(self.classifier, nick=self.nick, inbox=self.inbox)
        self.dispatcher.follow(self.chat_pool)
        self.transfers = TransferCoordinator(
            self.file_pool,
            classifier=self.classifier,
            handshake_timeout=self.config.get_handshake_timeout(),
            chunk_size=self.config.get_chunk_size()
        )
        logger.info(f"Joined room={room!r} chat topic={chat_topic.hex()} file topic={file_topic.hex()}")

    async def leave(self) -> None:
        """Cancel transfers, stop chat and leave both topics."""
        if not self.in_room:
            return
        if self.transfers is not None:
            await self.transfers.shutdown()
        if self.dispatcher is not None:
            await self.dispatcher.close()
        for pool in (self.chat_pool, self.file_pool):
            if pool is not None:
                await self.swarm.leave(pool.topic)

        logger.info(f"Left room={self.room!r}")
        self.room = None
        self.chat_pool = self.file_pool = None
        self.dispatcher = None
        self.transfers = None

    def set_nick(self, nick: str) -> None:
        self.nick = nick
        self.config.set_nick(nick)
        if self.dispatcher is not None:
            self.dispatcher.nick = nick

    async def say(self, text: str) -> Optional[ChatMessage]:
        """
        Broadcast a chat line.

        Raises:
            NotInRoomError: If no room is joined
        """
        self._require_room()
        return await self.dispatcher.broadcast(text)

    def send(self, path: str) -> SendCommand:
        """
        Offer a file or directory to the room.

        Raises:
            NotInRoomError: If no room is joined
            SourcePathError: If the path cannot be archived
        """
        self._require_room()
        return self.transfers.start_send(path)

    def receive(self, destination: str) -> ReceiveCommand:
        """
        Receive the next offered archive into a directory.

        Raises:
            NotInRoomError: If no room is joined
            DestinationError: If the directory is unusable
        """
        self._require_room()
        return self.transfers.start_receive(destination)

    def peers(self) -> Dict[str, List[str]]:
        """
        Map each connected peer id to the channels it is connected on.
        """
        channels: Dict[str, List[str]] = {}
        for name, pool in (("chat", self.chat_pool), ("files", self.file_pool)):
            if pool is None:
                continue
            for connection in pool.connections:
                channels.setdefault(connection.peer_id, []).append(name)
        return channels

    async def close(self) -> None:
        """Leave the room and shut the swarm down."""
        await self.leave()
        await self.swarm.destroy()
