"""Command handler functions for REPL operations."""

from typing import Callable, Optional

from common.logging_config import get_logger
from cli.models import (
    ChatCommand,
    HostCommand,
    NickCommand,
    PeersCommand,
    ReceiveFilesCommand,
    SendFilesCommand,
)
from cli.room import RoomSession
from transfer.coordinator import TransferCommand

logger = get_logger(__name__)

CommandWatcher = Callable[[TransferCommand], None]


async def handle_host(cmd: HostCommand, room: RoomSession) -> str:
    """
    Handle '/host' and '/join' commands.

    Args:
        cmd: HostCommand with the room secret
        room: Current room session

    Returns:
        Status message
    """
    leaving = room.room
    await room.host(cmd.room)
    lines = []
    if leaving is not None:
        lines.append("Left the previous room.")
    lines.append(f"Joined room '{cmd.room}' as {room.nick}. Ready to chat and transfer files.")
    return "\n".join(lines)


def handle_nick(cmd: NickCommand, room: RoomSession) -> str:
    """
    Handle '/nick' command.

    Args:
        cmd: NickCommand with the new nickname
        room: Current room session

    Returns:
        Status message
    """
    room.set_nick(cmd.nick)
    return f"Nickname set to: {cmd.nick}"


async def handle_chat(cmd: ChatCommand, room: RoomSession) -> Optional[str]:
    """
    Handle '/chat' and plain text lines.

    The local echo arrives through the room inbox, so there is nothing to
    print on success.

    Raises:
        NotInRoomError: If no room is joined
    """
    await room.say(cmd.text)
    return None


def handle_send(cmd: SendFilesCommand, room: RoomSession, watch: Optional[CommandWatcher] = None) -> str:
    """
    Handle '/send' command.

    Args:
        cmd: SendFilesCommand with the path to offer
        room: Current room session
        watch: Called with the started command so its events can be reported

    Returns:
        Status message

    Raises:
        NotInRoomError: If no room is joined
        SourcePathError: If the path cannot be archived
    """
    logger.info(f"Executing send command: path={cmd.path}")
    command = room.send(cmd.path)
    if watch is not None:
        watch(command)
    return f"Offering {command.path}. Waiting for receivers on the file channel..."


def handle_receive(cmd: ReceiveFilesCommand, room: RoomSession, watch: Optional[CommandWatcher] = None) -> str:
    """
    Handle '/receive' command.

    Args:
        cmd: ReceiveFilesCommand with the destination directory
        room: Current room session
        watch: Called with the started command so its events can be reported

    Returns:
        Status message

    Raises:
        NotInRoomError: If no room is joined
        DestinationError: If the directory is unusable
    """
    logger.info(f"Executing receive command: destination={cmd.destination}")
    command = room.receive(cmd.destination)
    if watch is not None:
        watch(command)
    return f"Ready to receive into {command.path}"


def handle_peers(cmd: PeersCommand, room: RoomSession) -> str:
    """
    Handle '/peers' command.

    Returns:
        One line per connected peer with its channels
    """
    if not room.in_room:
        return "Not in a room. Use /host <room> to join one."

    peers = room.peers()
    if not peers:
        return "No peers connected yet."
    lines = [f"{len(peers)} peer(s) connected:"]
    for peer_id, channels in sorted(peers.items()):
        lines.append(f"  {peer_id[:16]}  ({', '.join(channels)})")
    return "\n".join(lines)
