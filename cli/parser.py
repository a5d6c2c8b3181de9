"""Command parser for REPL input."""

import shlex

from common.constants import DEFAULT_NICK
from cli.models import (
    ChatCommand,
    ClearCommand,
    CommandRequest,
    HelpCommand,
    HostCommand,
    NickCommand,
    PeersCommand,
    QuitCommand,
    ReceiveFilesCommand,
    SendFilesCommand,
)


class ParseError(Exception):
    """Raised when command parsing fails."""

    pass


def parse_command(input_line: str) -> CommandRequest:
    """Parse user input into a CommandRequest object.

    Lines that do not start with '/' are chat messages.

    Args:
        input_line: Raw user input from REPL

    Returns:
        CommandRequest object

    Raises:
        ParseError: If command syntax is invalid
    """
    line = input_line.strip()
    if not line:
        raise ParseError("Empty command")

    if not line.startswith("/"):
        return ChatCommand(text=line)

    command_name, _, rest = line.partition(" ")
    command_name = command_name.lower()
    rest = rest.strip()

    if command_name in ("/host", "/join"):
        return _parse_host(command_name, rest)
    elif command_name == "/nick":
        return NickCommand(nick=rest or DEFAULT_NICK)
    elif command_name == "/chat":
        if not rest:
            raise ParseError("/chat requires a message")
        return ChatCommand(text=rest)
    elif command_name == "/send":
        return SendFilesCommand(path=_single_path(command_name, rest, "<path>"))
    elif command_name == "/receive":
        return ReceiveFilesCommand(destination=_single_path(command_name, rest, "<dir>"))
    elif command_name == "/peers":
        return PeersCommand()
    elif command_name == "/help":
        return HelpCommand()
    elif command_name == "/clear":
        return ClearCommand()
    elif command_name in ("/quit", "/exit"):
        return QuitCommand()
    else:
        raise ParseError(f"Unknown command: {command_name}")


def _parse_host(command_name: str, rest: str) -> HostCommand:
    """Parse '/host <room>' and '/join <room>'; the room may contain spaces."""
    if not rest:
        raise ParseError(f"Usage: {command_name} <room>")
    return HostCommand(room=rest, command=command_name[1:])


def _single_path(command_name: str, rest: str, placeholder: str) -> str:
    """Parse exactly one (optionally quoted) path argument."""
    try:
        args = shlex.split(rest)
    except ValueError as e:
        raise ParseError(f"Invalid syntax: {e}")

    if len(args) != 1:
        raise ParseError(f"Usage: {command_name} {placeholder}")
    return args[0]
