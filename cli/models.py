"""Command request data types for the REPL."""

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class HostCommand:
    """Create or join a room."""

    room: str
    command: Literal["host", "join"] = "host"


@dataclass(frozen=True)
class NickCommand:
    """Change the local nickname."""

    nick: str
    command: Literal["nick"] = "nick"


@dataclass(frozen=True)
class ChatCommand:
    """Broadcast a chat line to the room."""

    text: str
    command: Literal["chat"] = "chat"


@dataclass(frozen=True)
class SendFilesCommand:
    """Offer a file or directory to the room."""

    path: str
    command: Literal["send"] = "send"


@dataclass(frozen=True)
class ReceiveFilesCommand:
    """Receive the next offered file or directory."""

    destination: str
    command: Literal["receive"] = "receive"


@dataclass(frozen=True)
class PeersCommand:
    """Show connected peers."""

    command: Literal["peers"] = "peers"


@dataclass(frozen=True)
class HelpCommand:
    command: Literal["help"] = "help"


@dataclass(frozen=True)
class ClearCommand:
    command: Literal["clear"] = "clear"


@dataclass(frozen=True)
class QuitCommand:
    command: Literal["quit"] = "quit"


CommandRequest = (
    HostCommand
    | NickCommand
    | ChatCommand
    | SendFilesCommand
    | ReceiveFilesCommand
    | PeersCommand
    | HelpCommand
    | ClearCommand
    | QuitCommand
)
