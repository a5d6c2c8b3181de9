"""REPL with prompt_toolkit for user interaction."""

import asyncio
import os
import sys
from typing import Callable, Dict, Optional, Set

from prompt_toolkit import PromptSession
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.patch_stdout import patch_stdout

from common.exceptions import WormholeException
from common.logging_config import get_logger
from common.types import EventKind
from cli.commands import (
    handle_chat,
    handle_host,
    handle_nick,
    handle_peers,
    handle_receive,
    handle_send,
)
from cli.completer import WormholeCompleter
from cli.constants import (
    HELP_TEXT,
    LOGO,
    PROMPT_TEXT,
    STYLE,
    WELCOME_HELP,
    WELCOME_TITLE,
)
from cli.models import (
    ChatCommand,
    ClearCommand,
    HelpCommand,
    HostCommand,
    NickCommand,
    PeersCommand,
    QuitCommand,
    ReceiveFilesCommand,
    SendFilesCommand,
)
from cli.parser import ParseError, parse_command
from cli.room import RoomSession
from cli.utils import format_chat_line, format_transfer_event
from transfer.coordinator import TransferCommand

logger = get_logger(__name__)

PROGRESS_INTERVAL_SECONDS = 1.0


def clear_screen() -> None:
    """Clear the terminal screen (cross-platform)."""
    if sys.platform == "win32":
        os.system("cls")
    else:
        os.system("clear")


def show_welcome() -> None:
    """Display the Wormhole logo and welcome lines."""
    print(LOGO)
    print(WELCOME_TITLE)
    print(WELCOME_HELP)


async def report_transfer(
    command: TransferCommand,
    output: Callable[[str], None] = print,
    interval: float = PROGRESS_INTERVAL_SECONDS
) -> None:
    """
    Print the events of a transfer command until it finishes.

    Progress lines are throttled per connection; terminal events are always
    printed. A send command keeps reporting until cancelled, since it serves
    every receiver that shows up.
    """
    loop = asyncio.get_running_loop()
    last_progress: Dict[str, float] = {}
    while True:
        event = await command.events.get()
        if event.kind == EventKind.PROGRESS:
            now = loop.time()
            last = last_progress.get(event.connection_id)
            if last is not None and now - last < interval:
                continue
            last_progress[event.connection_id] = now
        output(format_transfer_event(event))

        if event.kind == EventKind.FINISHED and command.completes_on_finish:
            return


class WormholeRepl:
    """Interactive shell bound to one room session."""

    def __init__(self, room: RoomSession):
        self.room = room
        self.session: PromptSession = PromptSession(
            completer=WormholeCompleter(), history=InMemoryHistory(), style=STYLE
        )
        self._tasks: Set[asyncio.Task] = set()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def watch(self, command: TransferCommand) -> None:
        """Report a transfer command's events in the background."""
        self._spawn(report_transfer(command))

    def _prompt(self):
        if self.room.in_room:
            return [("class:room", f"[{self.room.room}] "), ("class:prompt", PROMPT_TEXT)]
        return [("class:prompt", PROMPT_TEXT)]

    async def _print_inbox(self) -> None:
        while True:
            delivery = await self.room.inbox.get()
            message = delivery.message
            print(format_chat_line(message.nick, message.text, message.timestamp, self.room.palette))

    async def dispatch_command(self, cmd_obj) -> Optional[str]:
        """Dispatch parsed command to appropriate handler."""
        if isinstance(cmd_obj, HostCommand):
            return await handle_host(cmd_obj, self.room)
        elif isinstance(cmd_obj, NickCommand):
            return handle_nick(cmd_obj, self.room)
        elif isinstance(cmd_obj, ChatCommand):
            return await handle_chat(cmd_obj, self.room)
        elif isinstance(cmd_obj, SendFilesCommand):
            return handle_send(cmd_obj, self.room, watch=self.watch)
        elif isinstance(cmd_obj, ReceiveFilesCommand):
            return handle_receive(cmd_obj, self.room, watch=self.watch)
        elif isinstance(cmd_obj, PeersCommand):
            return handle_peers(cmd_obj, self.room)
        elif isinstance(cmd_obj, HelpCommand):
            return HELP_TEXT
        elif isinstance(cmd_obj, ClearCommand):
            clear_screen()
            show_welcome()
            return None
        else:
            return f"Unknown command type: {type(cmd_obj)}"

    async def run(self, initial_room: Optional[str] = None) -> None:
        """Start interactive REPL with prompt_toolkit."""
        clear_screen()
        show_welcome()
        self._spawn(self._print_inbox())

        try:
            if initial_room:
                print(await handle_host(HostCommand(room=initial_room), self.room))

            with patch_stdout(raw=True):
                await self._loop()
        finally:
            for task in list(self._tasks):
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            await self.room.close()

    async def _loop(self) -> None:
        while True:
            try:
                user_input = await self.session.prompt_async(self._prompt)
            except KeyboardInterrupt:
                continue
            except EOFError:
                print("\nGoodbye!")
                break

            if not user_input.strip():
                continue

            try:
                cmd_obj = parse_command(user_input)
                if isinstance(cmd_obj, QuitCommand):
                    print("Goodbye!")
                    break
                result = await self.dispatch_command(cmd_obj)
                if result:
                    print(result)
            except ParseError as e:
                print(f"Error: {e}")
            except WormholeException as e:
                print(f"Error: {e}")
            except Exception as e:
                logger.error(f"Command failed: {e}", exc_info=True)
                print(f"Error: {e}")
