"""Utility functions for CLI output."""

from datetime import datetime
from typing import Optional

from cli.constants import DIM, GREEN, RECEIVER_LABEL, RED, RESET, SENDER_LABEL
from cli.palette import NicknamePalette
from common.types import EventKind, TransferEvent, TransferRole


def format_file_size(size_bytes: int) -> str:
    """
    Format file size in bytes to human-readable format with appropriate unit.

    Uses binary units (1024-based) and automatically selects the most
    appropriate unit (B, KiB, MiB, GiB, TiB).

    Args:
        size_bytes: File size in bytes

    Returns:
        Formatted string with size and unit (e.g., "1.50 MiB", "512 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"

    units = ['KiB', 'MiB', 'GiB', 'TiB']
    size = size_bytes / 1024.0

    for unit in units:
        if size < 1024.0:
            return f"{size:.2f} {unit}"
        size /= 1024.0

    return f"{size:.2f} PiB"


def format_timestamp(timestamp_ms: int) -> str:
    """Local wall-clock time of a millisecond epoch timestamp as HH:MM:SS."""
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%H:%M:%S")


def format_chat_line(nick: str, text: str, timestamp_ms: int, palette: Optional[NicknamePalette] = None) -> str:
    """
    Render a chat line as "[HH:MM:SS] <nick> text".

    Args:
        palette: Colors the nickname when given
    """
    shown = palette.ansi(nick) if palette is not None else nick
    return f"{DIM}[{format_timestamp(timestamp_ms)}]{RESET} <{shown}> {text}"


def format_transfer_event(event: TransferEvent) -> str:
    """Render a transfer event as one status line."""
    label = SENDER_LABEL if event.role == TransferRole.SENDER else RECEIVER_LABEL
    peer = event.connection_id

    if event.kind == EventKind.PROGRESS:
        verb = "sent" if event.role == TransferRole.SENDER else "received"
        return f"{label} {peer}: {format_file_size(event.total)} {verb}"
    if event.kind == EventKind.FINISHED:
        if event.role == TransferRole.SENDER:
            return f"{label} {peer}: {GREEN}transfer finished{RESET} ({format_file_size(event.total)})"
        return f"{label} {peer}: {GREEN}transfer and extraction finished{RESET}"
    if event.kind == EventKind.CLOSED:
        return f"{label} {peer}: connection closed ({event.error}), waiting for the peer to reconnect"
    return f"{label} {peer}: {RED}{event.error}{RESET}"
