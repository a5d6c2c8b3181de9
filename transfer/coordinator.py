"""Fan-out of transfer sessions over a topic's connection pool."""

import asyncio
import os
from pathlib import Path
from typing import Dict, List, Optional, Set, Union

from common.constants import DEFAULT_CHUNK_SIZE_BYTES, DEFAULT_HANDSHAKE_TIMEOUT_SECONDS
from common.exceptions import ConnectionBusyError, DestinationError, HandshakeTimeout
from common.logging_config import get_logger
from common.types import SessionState, TransferResult, TransferRole
from transfer.archive import ArchivePacker
from transfer.session import ReceiverSession, SenderSession, TransferSession, should_close_connection

logger = get_logger(__name__)

PathLike = Union[str, os.PathLike]


class ConnectionClassifier:
    """
    Registry of which connections carry a transfer and which carry chat.

    A connection has at most one role at a time; sessions claim a connection
    for the duration of a transfer and release it at any terminal state.
    """

    def __init__(self):
        self._transfer: Set[str] = set()
        self._chat: Set[str] = set()

    def mark_transfer(self, connection) -> None:
        """
        Claim a connection for a transfer session.

        Raises:
            ConnectionBusyError: If a chat reader or another session owns it
        """
        cid = connection.connection_id
        if cid in self._chat:
            raise ConnectionBusyError(f"{cid} carries a chat reader")
        if cid in self._transfer:
            raise ConnectionBusyError(f"{cid} is already transferring")
        self._transfer.add(cid)

    def release(self, connection) -> None:
        self._transfer.discard(connection.connection_id)

    def is_transfer(self, connection) -> bool:
        return connection.connection_id in self._transfer

    def mark_chat(self, connection) -> None:
        """
        Record that a chat reader is attached to a connection.

        Raises:
            ConnectionBusyError: If a transfer session owns it
        """
        cid = connection.connection_id
        if cid in self._transfer:
            raise ConnectionBusyError(f"{cid} is transferring")
        self._chat.add(cid)

    def unmark_chat(self, connection) -> None:
        self._chat.discard(connection.connection_id)

    def is_chat(self, connection) -> bool:
        return connection.connection_id in self._chat

    def transfer_connections(self) -> Set[str]:
        return set(self._transfer)


class TransferCommand:
    """
    Handle for one send or receive request spanning every peer connection.

    Progress from all sessions of the command is published on `events` and
    summed in `bytes_total`.
    """

    role: TransferRole
    completes_on_finish = False

    def __init__(self, path: Path):
        self.path = path
        self.events: asyncio.Queue = asyncio.Queue()
        self.sessions: List[TransferSession] = []
        self.results: List[TransferResult] = []
        self.finished_result: Optional[TransferResult] = None
        self.active = True
        self._finished = asyncio.Event()
        self._tasks: Set[asyncio.Task] = set()
        self._follow_task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.path}, sessions={len(self.sessions)})"

    @property
    def bytes_total(self) -> int:
        return sum(session.bytes_transferred for session in self.sessions)

    @property
    def is_finished(self) -> bool:
        return self._finished.is_set()

    def create_session(self, connection, **kwargs) -> TransferSession:
        raise NotImplementedError

    def _record(self, result: TransferResult) -> None:
        self.results.append(result)
        if result.ok and not self._finished.is_set():
            self.finished_result = result
            self._finished.set()

    async def wait_finished(self, timeout: Optional[float] = None) -> TransferResult:
        """
        Wait until a session of this command finishes successfully.

        Raises:
            asyncio.TimeoutError: If the timeout expires first
        """
        await asyncio.wait_for(self._finished.wait(), timeout)
        return self.finished_result


class SendCommand(TransferCommand):
    """Offers a file or directory to every peer until cancelled."""

    role = TransferRole.SENDER

    def create_session(self, connection, **kwargs) -> TransferSession:
        return SenderSession(connection, self.path, events=self.events, **kwargs)


class ReceiveCommand(TransferCommand):
    """Accepts one archive into a directory; done after the first finished session."""

    role = TransferRole.RECEIVER
    completes_on_finish = True

    def create_session(self, connection, **kwargs) -> TransferSession:
        return ReceiverSession(connection, self.path, events=self.events, **kwargs)


class TransferCoordinator:
    """
    Attaches transfer sessions to the connections of one topic.

    Each command gets a fresh session per connection, on every connection
    present when it starts and on every connection that appears while it is
    active. Connections already claimed by another session are skipped.
    """

    def __init__(
        self,
        discovery,
        classifier: Optional[ConnectionClassifier] = None,
        handshake_timeout: Optional[float] = DEFAULT_HANDSHAKE_TIMEOUT_SECONDS,
        chunk_size: int = DEFAULT_CHUNK_SIZE_BYTES
    ):
        """
        Initialize coordinator.

        Args:
            discovery: Connection pool of the file topic
            classifier: Role registry shared with the chat dispatcher
            handshake_timeout: Seconds a sender waits for the receiver's handshake
            chunk_size: Session read/write granularity in bytes
        """
        self.discovery = discovery
        self.classifier = classifier or ConnectionClassifier()
        self.handshake_timeout = handshake_timeout
        self.chunk_size = chunk_size
        self.commands: List[TransferCommand] = []
        self._destination_locks: Dict[Path, asyncio.Lock] = {}

    def start_send(self, source_path: PathLike) -> SendCommand:
        """
        Offer a file or directory to all peers.

        Raises:
            SourcePathError: If the path does not exist or cannot be read
        """
        packer = ArchivePacker(source_path, self.chunk_size)
        command = SendCommand(packer.source_path)
        self._launch(command)
        logger.info(f"Offering {command.path} to {len(self.discovery.connections)} peer(s)")
        return command

    def start_receive(self, destination_dir: PathLike) -> ReceiveCommand:
        """
        Accept an archive from a peer into a directory.

        Raises:
            DestinationError: If the directory cannot be created or written
        """
        destination = Path(destination_dir).expanduser().resolve()
        try:
            destination.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DestinationError(f"Cannot create {destination}: {e}") from e
        if not os.access(destination, os.W_OK):
            raise DestinationError(f"Destination {destination} is not writable")

        command = ReceiveCommand(destination)
        self._launch(command)
        logger.info(f"Waiting for files into {destination}")
        return command

    def _launch(self, command: TransferCommand) -> None:
        self.commands.append(command)
        queue = self.discovery.subscribe()
        for connection in self.discovery.connections:
            self._attach(command, connection)
        command._follow_task = asyncio.create_task(self._follow(command, queue))

    async def _follow(self, command: TransferCommand, queue: asyncio.Queue) -> None:
        try:
            while command.active:
                connection = await queue.get()
                if connection is None:
                    break
                self._attach(command, connection)
        finally:
            self.discovery.unsubscribe(queue)

    def _attach(self, command: TransferCommand, connection) -> None:
        if not command.active or connection.is_closed or self.classifier.is_transfer(connection):
            return
        try:
            self.classifier.mark_transfer(connection)
        except ConnectionBusyError as e:
            logger.warning(f"Not attaching {command.role.value} to {connection.connection_id}: {e}")
            return

        session = command.create_session(
            connection, chunk_size=self.chunk_size, handshake_timeout=self.handshake_timeout
        )
        command.sessions.append(session)
        task = asyncio.create_task(self._drive(command, session))
        command._tasks.add(task)
        task.add_done_callback(command._tasks.discard)
        logger.info(f"Attached {command.role.value} session to {connection.connection_id}")

    def _destination_lock(self, path: Path) -> asyncio.Lock:
        lock = self._destination_locks.get(path)
        if lock is None:
            lock = asyncio.Lock()
            self._destination_locks[path] = lock
        return lock

    def _forget_destination_lock(self, path: Path) -> None:
        """Drop a destination's lock once no receive command for it is active."""
        lock = self._destination_locks.get(path)
        if lock is None or lock.locked():
            return
        if any(isinstance(c, ReceiveCommand) and c.path == path for c in self.commands):
            return
        del self._destination_locks[path]

    async def _drive(self, command: TransferCommand, session: TransferSession) -> None:
        connection = session.connection
        timed_out = False
        try:
            if isinstance(command, ReceiveCommand):
                async with self._destination_lock(command.path):
                    if not command.active:
                        return
                    result = await session.run()
            else:
                result = await session.run()

            command._record(result)
            if should_close_connection(result):
                connection.close()
            elif result.ok and result.role == TransferRole.SENDER:
                await self._await_peer_close(connection)
            timed_out = isinstance(result.error, HandshakeTimeout)

            if result.ok and command.completes_on_finish:
                self._stop(command)
        except asyncio.CancelledError:
            if session.state != SessionState.IDLE:
                connection.close()
            raise
        finally:
            self.classifier.release(connection)
            if isinstance(command, ReceiveCommand) and not command.active:
                self._forget_destination_lock(command.path)

        # The open connection never sees a new subscription event, so a peer
        # that handshakes late is served by a fresh session on it.
        if timed_out:
            self._attach(command, connection)

    async def _await_peer_close(self, connection) -> None:
        """
        Hold a finished sender connection until the receiver closes it, then close our side.
        """
        try:
            await asyncio.wait_for(self._drain(connection), self.handshake_timeout or None)
        except asyncio.TimeoutError:
            logger.debug(f"{connection.connection_id}: receiver did not close after transfer")
        finally:
            connection.close()

    @staticmethod
    async def _drain(connection) -> None:
        try:
            while await connection.read(DEFAULT_CHUNK_SIZE_BYTES):
                pass
        except (ConnectionError, OSError) as e:
            logger.debug(f"{connection.connection_id}: closed with error after transfer: {e}")

    def _stop(self, command: TransferCommand) -> List[asyncio.Task]:
        """Deactivate a command and cancel its tasks other than the caller's."""
        command.active = False
        current = asyncio.current_task()
        tasks = [t for t in command._tasks if t is not current]
        if command._follow_task is not None and command._follow_task is not current:
            tasks.append(command._follow_task)
        for task in tasks:
            task.cancel()
        if command in self.commands:
            self.commands.remove(command)
        return tasks

    async def cancel(self, command: TransferCommand) -> None:
        """Stop a command and wait for its sessions to wind down."""
        tasks = self._stop(command)
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Cancelled {command!r}")

    async def shutdown(self) -> None:
        for command in list(self.commands):
            await self.cancel(command)
