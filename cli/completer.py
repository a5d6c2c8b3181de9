"""Custom completer for the Wormhole REPL with path autocompletion."""

import os
from pathlib import Path
from typing import Iterable

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from cli.constants import COMMANDS, PATH_COMMANDS


class WormholeCompleter(Completer):
    """
    Custom completer that provides:
    - Command name completion for a leading '/' token
    - File system path completion for '/send' and '/receive'
    """

    def get_completions(
        self, document: Document, complete_event
    ) -> Iterable[Completion]:
        """
        Generate completions based on cursor position and context.

        For the first token, completes command names.
        For '/send' arguments, completes files and directories.
        For '/receive' arguments, completes directories only.
        """
        text = document.text_before_cursor
        tokens = text.split()

        is_typing_new_token = text.endswith(" ") or not tokens

        if not tokens or (len(tokens) == 1 and not is_typing_new_token):
            partial = tokens[0] if tokens else ""
            if not partial or partial.startswith("/"):
                yield from self._complete_commands(partial)
            return

        command = tokens[0].lower()
        if command not in PATH_COMMANDS:
            return
        if len(tokens) > 2 or (len(tokens) == 2 and is_typing_new_token):
            return

        current_word = "" if is_typing_new_token else tokens[-1]
        yield from self._complete_paths(current_word, directories_only=command == "/receive")

    def _complete_commands(self, partial: str) -> Iterable[Completion]:
        """Complete command names matching the partial input."""
        partial_lower = partial.lower()
        for cmd in COMMANDS:
            if cmd.startswith(partial_lower):
                yield Completion(cmd, start_position=-len(partial))

    def _complete_paths(self, partial: str, directories_only: bool) -> Iterable[Completion]:
        """
        Complete entries of the directory named by the partial path.

        Directories are suggested with a trailing separator; hidden entries
        only when the partial name itself starts with a dot.
        """
        head, _, name_prefix = partial.rpartition(os.sep)
        if head:
            base = Path(os.path.expanduser(head + os.sep))
        elif partial.startswith(os.sep):
            base = Path(os.sep)
        else:
            base = Path.cwd()

        try:
            entries = sorted(base.iterdir(), key=lambda p: p.name)
        except OSError:
            return

        prefix = f"{head}{os.sep}" if head or partial.startswith(os.sep) else ""
        for entry in entries:
            if not entry.name.startswith(name_prefix):
                continue
            if entry.name.startswith(".") and not name_prefix.startswith("."):
                continue
            is_dir = entry.is_dir()
            if directories_only and not is_dir:
                continue
            suggestion = f"{prefix}{entry.name}{os.sep if is_dir else ''}"
            yield Completion(suggestion, start_position=-len(partial))
