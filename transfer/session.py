"""Per-connection transfer sessions.

A session drives exactly one transfer over one connection: the receiver
announces how much of the archive it already holds, the sender streams the
rest, and the receiver persists and finally extracts it. Sessions are
single-shot state machines; they publish TransferEvents on a queue and
return a TransferResult instead of raising.
"""

import asyncio
import os
from pathlib import Path
from typing import Optional, Union

from common.constants import (
    DEFAULT_CHUNK_SIZE_BYTES,
    DEFAULT_HANDSHAKE_TIMEOUT_SECONDS,
    PARTIAL_FILE_NAME,
)
from common.exceptions import (
    ConnectionFailure,
    DestinationError,
    ExtractionFailure,
    HandshakeFailure,
    HandshakeTimeout,
    SourcePathError,
)
from common.logging_config import get_logger
from common.types import EventKind, SessionState, TransferEvent, TransferResult, TransferRole
from transfer.archive import ArchivePacker, ArchiveUnpacker
from transfer.handshake import HandshakeNegotiator
from transfer.skipper import ByteOffsetSkipper

logger = get_logger(__name__)

PathLike = Union[str, os.PathLike]

_ALLOWED_TRANSITIONS = {
    SessionState.IDLE: {SessionState.HANDSHAKING},
    SessionState.HANDSHAKING: {SessionState.STREAMING, SessionState.ERRORED, SessionState.CLOSED},
    SessionState.STREAMING: {
        SessionState.EXTRACTING, SessionState.FINISHED, SessionState.ERRORED, SessionState.CLOSED
    },
    SessionState.EXTRACTING: {SessionState.FINISHED, SessionState.ERRORED, SessionState.CLOSED},
}

_PEER_GONE = (ConnectionResetError, BrokenPipeError, ConnectionAbortedError)


class TransferSession:
    """
    Base class holding the state machine shared by both roles.
    """

    role: TransferRole

    def __init__(
        self,
        connection,
        events: Optional[asyncio.Queue] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE_BYTES,
        handshake_timeout: Optional[float] = DEFAULT_HANDSHAKE_TIMEOUT_SECONDS
    ):
        """
        Args:
            connection: PeerConnection the session runs on
            events: Queue receiving TransferEvents, a private one when omitted
            chunk_size: Read/write granularity in bytes
            handshake_timeout: Seconds to wait for the handshake (None or 0 disables)
        """
        self.connection = connection
        self.events: asyncio.Queue = events if events is not None else asyncio.Queue()
        self.chunk_size = chunk_size
        self.negotiator = HandshakeNegotiator(timeout=handshake_timeout)

        self.state = SessionState.IDLE
        self.start_offset = 0
        self.bytes_transferred = 0
        self.error: Optional[BaseException] = None

    @property
    def connection_id(self) -> str:
        return self.connection.connection_id

    @property
    def total(self) -> int:
        """Running total reported in events."""
        return self.bytes_transferred

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS.get(self.state, set()):
            raise RuntimeError(f"Illegal session transition {self.state.value} -> {new_state.value}")
        logger.debug(f"{self.connection_id} {self.role.value}: {self.state.value} -> {new_state.value}")
        self.state = new_state

    def _publish(self, kind: EventKind, chunk_size: int = 0, total: int = 0,
                 error: Optional[BaseException] = None) -> None:
        self.events.put_nowait(TransferEvent(
            kind=kind,
            role=self.role,
            connection_id=self.connection_id,
            chunk_size=chunk_size,
            total=total,
            error=error
        ))

    def _terminate(self, state: SessionState, error: Optional[BaseException] = None) -> TransferResult:
        """Move to a terminal state and publish the matching event."""
        self._transition(state)
        self.error = error
        kind = {
            SessionState.FINISHED: EventKind.FINISHED,
            SessionState.ERRORED: EventKind.ERROR,
            SessionState.CLOSED: EventKind.CLOSED,
        }[state]
        self._publish(kind, total=self.total, error=error)

        if error is None:
            logger.info(
                f"{self.connection_id} {self.role.value} finished: "
                f"{self.bytes_transferred} bytes from offset {self.start_offset}"
            )
        else:
            logger.warning(f"{self.connection_id} {self.role.value} {state.value}: {error}")
        return self.result()

    def result(self) -> TransferResult:
        return TransferResult(
            role=self.role,
            connection_id=self.connection_id,
            state=self.state,
            start_offset=self.start_offset,
            bytes_transferred=self.bytes_transferred,
            error=self.error
        )

    async def run(self) -> TransferResult:
        """
        Drive the session to a terminal state.

        Returns:
            The terminal TransferResult; failures are reported there, not raised

        Raises:
            RuntimeError: If the session has already been run
        """
        if self.state != SessionState.IDLE:
            raise RuntimeError(f"Session on {self.connection_id} has already run")
        self._transition(SessionState.HANDSHAKING)
        try:
            return await self._run()
        except asyncio.CancelledError:
            if not self.state.is_terminal:
                self._terminate(SessionState.CLOSED, ConnectionFailure("Transfer cancelled"))
            raise

    async def _run(self) -> TransferResult:
        raise NotImplementedError


class SenderSession(TransferSession):
    """
    Streams the archive of a file or directory, starting at the offset the
    receiver announces.
    """

    role = TransferRole.SENDER

    def __init__(self, connection, source_path: PathLike, **kwargs):
        super().__init__(connection, **kwargs)
        self.source_path = Path(source_path)

    async def _run(self) -> TransferResult:
        try:
            self.start_offset = await self.negotiator.await_handshake(self.connection)
        except HandshakeFailure as e:
            return self._terminate(SessionState.ERRORED, e)

        logger.info(f"{self.connection_id} sender: peer holds {self.start_offset} bytes of {self.source_path}")
        self._transition(SessionState.STREAMING)

        try:
            packer = ArchivePacker(self.source_path, self.chunk_size)
            loop = asyncio.get_running_loop()
            archive_length = await loop.run_in_executor(None, packer.archive_size)

            if self.start_offset > archive_length:
                logger.warning(
                    f"{self.connection_id} sender: peer offset {self.start_offset} is past the "
                    f"archive length {archive_length}, source may have changed"
                )
            if self.start_offset < archive_length:
                await self._stream(packer)

            await self.connection.end()
        except SourcePathError as e:
            return self._terminate(SessionState.ERRORED, e)
        except _PEER_GONE as e:
            return self._terminate(SessionState.CLOSED, ConnectionFailure(f"Peer closed the connection: {e}"))
        except (ConnectionError, OSError) as e:
            return self._terminate(SessionState.ERRORED, ConnectionFailure(f"Connection error: {e}"))

        return self._terminate(SessionState.FINISHED)

    async def _stream(self, packer: ArchivePacker) -> None:
        skipper = ByteOffsetSkipper(self.start_offset)
        async for chunk in packer.stream():
            data = skipper.feed(chunk)
            if not data:
                continue
            await self.connection.write(data)
            self.bytes_transferred += len(data)
            self._publish(EventKind.PROGRESS, chunk_size=len(data), total=self.bytes_transferred)


class ReceiverSession(TransferSession):
    """
    Appends the inbound archive to the partial file in the destination
    directory and extracts it once the sender half-closes.

    The partial file is the only resume state: its size is the offset sent
    in the handshake, and it is removed only after a successful extraction.
    """

    role = TransferRole.RECEIVER

    def __init__(self, connection, destination_dir: PathLike, **kwargs):
        super().__init__(connection, **kwargs)
        self.destination_dir = Path(destination_dir)
        self.partial_path = self.destination_dir / PARTIAL_FILE_NAME

    @property
    def total(self) -> int:
        return self.start_offset + self.bytes_transferred

    def _partial_size(self) -> int:
        try:
            return self.partial_path.stat().st_size
        except FileNotFoundError:
            return 0

    async def _run(self) -> TransferResult:
        try:
            self.destination_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return self._terminate(
                SessionState.ERRORED, DestinationError(f"Cannot create {self.destination_dir}: {e}")
            )

        self.start_offset = self._partial_size()
        try:
            await self.negotiator.send_handshake(self.connection, self.start_offset)
        except HandshakeFailure as e:
            return self._terminate(SessionState.ERRORED, e)

        if self.start_offset:
            logger.info(f"{self.connection_id} receiver: resuming at byte {self.start_offset}")
        self._transition(SessionState.STREAMING)

        try:
            await self._receive()
        except (ConnectionError, OSError) as e:
            return self._terminate(SessionState.ERRORED, ConnectionFailure(f"Connection error: {e}"))

        self._transition(SessionState.EXTRACTING)
        unpacker = ArchiveUnpacker(self.partial_path, self.destination_dir)
        try:
            if not await unpacker.is_complete_async():
                return self._terminate(
                    SessionState.CLOSED,
                    ConnectionFailure(f"Peer closed after {self.total} bytes, archive incomplete")
                )
            await unpacker.extract_async()
            self.partial_path.unlink()
        except ExtractionFailure as e:
            return self._terminate(SessionState.ERRORED, e)
        except OSError as e:
            return self._terminate(SessionState.ERRORED, ExtractionFailure(f"Cannot remove partial file: {e}"))

        result = self._terminate(SessionState.FINISHED)
        self.connection.close()
        return result

    async def _receive(self) -> None:
        total = self.start_offset
        with open(self.partial_path, 'ab') as partial:
            while True:
                chunk = await self.connection.read(self.chunk_size)
                if not chunk:
                    break
                partial.write(chunk)
                partial.flush()
                total += len(chunk)
                self.bytes_transferred += len(chunk)
                logger.debug(f"{self.connection_id} receiver: +{len(chunk)} bytes ({total} total)")
                self._publish(EventKind.PROGRESS, chunk_size=len(chunk), total=total)


def should_close_connection(result: TransferResult) -> bool:
    """
    True if the connection should be closed after the session ended.

    Every failure except a handshake timeout leaves the connection in an
    unknown position of the stream. A timed out connection never carried
    payload and can stay in the pool.
    """
    if result.state == SessionState.FINISHED:
        return False
    return not isinstance(result.error, HandshakeTimeout)
