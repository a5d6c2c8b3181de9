"""Resume-point negotiation that precedes every archive stream."""

import asyncio
from typing import Optional

from common.exceptions import HandshakeFailure, HandshakeTimeout, ProtocolError
from common.logging_config import get_logger
from common.protocol import HandshakeMessage, encode_frame, parse_message, read_frame

logger = get_logger(__name__)


class HandshakeNegotiator:
    """
    Exchanges the single HANDSHAKE frame of a transfer connection.

    The receiver sends exactly one framed handshake and only then starts
    treating inbound bytes as payload. The sender reads frames until one
    parses as a handshake, ignoring any other frame, and writes nothing
    before that.
    """

    def __init__(self, timeout: Optional[float] = None):
        """
        Args:
            timeout: Seconds to wait for the peer's handshake; None or 0 waits forever
        """
        self.timeout = timeout or None

    async def send_handshake(self, connection, received_bytes: int) -> None:
        """
        Announce how many archive bytes this side already holds.

        Raises:
            HandshakeFailure: If the write fails
        """
        try:
            await connection.write(encode_frame(HandshakeMessage(received_bytes=received_bytes)))
        except (ConnectionError, OSError) as e:
            raise HandshakeFailure(f"Could not send handshake on {connection.connection_id}: {e}") from e
        logger.debug(f"{connection.connection_id}: sent handshake receivedBytes={received_bytes}")

    async def await_handshake(self, connection) -> int:
        """
        Wait for the peer's handshake.

        Returns:
            The peer's receivedBytes (0 when the field is absent)

        Raises:
            HandshakeFailure: On EOF, connection error or malformed framing
            HandshakeTimeout: If the timeout expires first
        """
        try:
            return await asyncio.wait_for(self._read_until_handshake(connection), self.timeout)
        except asyncio.TimeoutError:
            raise HandshakeTimeout(
                f"No handshake from {connection.connection_id} within {self.timeout}s"
            ) from None

    async def _read_until_handshake(self, connection) -> int:
        ignored = 0
        while True:
            try:
                body = await read_frame(connection)
            except ProtocolError as e:
                raise HandshakeFailure(f"Bad framing from {connection.connection_id}: {e}") from e
            except (ConnectionError, OSError) as e:
                raise HandshakeFailure(
                    f"Connection {connection.connection_id} failed before handshake: {e}"
                ) from e

            if body is None:
                raise HandshakeFailure(f"Connection {connection.connection_id} closed before handshake")

            message = parse_message(body)
            if isinstance(message, HandshakeMessage):
                if ignored:
                    logger.debug(f"{connection.connection_id}: ignored {ignored} frame(s) before handshake")
                return message.received_bytes

            ignored += 1
