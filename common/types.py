"""Shared data type definitions (session states, transfer events and results)."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class TransferRole(str, Enum):
    SENDER = "sender"
    RECEIVER = "receiver"


class SessionState(str, Enum):
    """
    Lifecycle of one transfer session on one connection.

    IDLE -> HANDSHAKING -> STREAMING -> [EXTRACTING] -> FINISHED
    Any non-terminal state may move to ERRORED or CLOSED.
    """
    IDLE = "idle"
    HANDSHAKING = "handshaking"
    STREAMING = "streaming"
    EXTRACTING = "extracting"
    FINISHED = "finished"
    ERRORED = "errored"
    CLOSED = "closed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.FINISHED, SessionState.ERRORED, SessionState.CLOSED)


class EventKind(str, Enum):
    PROGRESS = "progress"
    FINISHED = "finished"
    ERROR = "error"
    CLOSED = "closed"


@dataclass(frozen=True)
class TransferEvent:
    """
    Notification published by a session.

    For PROGRESS, chunk_size is the number of bytes just written (sender) or
    appended (receiver) and total is the running total, which for a receiver
    includes the resumed prefix.
    """
    kind: EventKind
    role: TransferRole
    connection_id: str
    chunk_size: int = 0
    total: int = 0
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class TransferResult:
    """
    Terminal outcome of a session.
    """
    role: TransferRole
    connection_id: str
    state: SessionState
    start_offset: int
    bytes_transferred: int
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.state == SessionState.FINISHED
