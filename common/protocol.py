"""Wire messages and length-prefixed framing for the control channel.

Every control message is sent as a frame: a 4-byte big-endian length
followed by that many bytes of UTF-8 JSON. The raw archive payload that
follows a handshake is not framed.
"""

import asyncio
import json
import struct
from dataclasses import dataclass
from typing import Optional, Union

from common.constants import (
    FRAME_HEADER_BYTES,
    MAX_CONTROL_FRAME_BYTES,
    MESSAGE_TYPE_CHAT,
    MESSAGE_TYPE_HANDSHAKE,
)
from common.exceptions import ProtocolError

_FRAME_HEADER = struct.Struct('>I')


def _is_uint(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


@dataclass(frozen=True)
class HandshakeMessage:
    """Resume negotiation sent once by the receiving side."""
    received_bytes: int = 0

    def to_json(self) -> bytes:
        """Serialize to JSON bytes."""
        return json.dumps({
            'type': MESSAGE_TYPE_HANDSHAKE,
            'receivedBytes': self.received_bytes
        }).encode('utf-8')

    @classmethod
    def from_dict(cls, obj: dict) -> 'HandshakeMessage':
        """Build from a decoded JSON object; a missing offset means 0."""
        received = obj.get('receivedBytes', 0)
        if received is None:
            received = 0
        if not _is_uint(received):
            raise ValueError(f"receivedBytes must be a non-negative integer, got {received!r}")
        return cls(received_bytes=received)

    @classmethod
    def from_json(cls, data: bytes) -> 'HandshakeMessage':
        """Deserialize from JSON bytes."""
        return cls.from_dict(json.loads(data))


@dataclass(frozen=True)
class ChatMessage:
    """A chat line broadcast to the room."""
    nick: str
    text: str
    timestamp: int

    def to_json(self) -> bytes:
        """Serialize to JSON bytes."""
        return json.dumps({
            'type': MESSAGE_TYPE_CHAT,
            'nick': self.nick,
            'text': self.text,
            'timestamp': self.timestamp
        }).encode('utf-8')

    @classmethod
    def from_dict(cls, obj: dict) -> 'ChatMessage':
        """Build from a decoded JSON object."""
        nick, text, timestamp = obj['nick'], obj['text'], obj['timestamp']
        if not isinstance(nick, str) or not isinstance(text, str):
            raise ValueError("nick and text must be strings")
        if not _is_uint(timestamp):
            raise ValueError(f"timestamp must be a non-negative integer, got {timestamp!r}")
        return cls(nick=nick, text=text, timestamp=timestamp)

    @classmethod
    def from_json(cls, data: bytes) -> 'ChatMessage':
        """Deserialize from JSON bytes."""
        return cls.from_dict(json.loads(data))


ControlMessage = Union[HandshakeMessage, ChatMessage]


def parse_message(body: bytes) -> Optional[ControlMessage]:
    """
    Parse a frame body into a control message.

    Args:
        body: Raw frame body

    Returns:
        HandshakeMessage or ChatMessage, or None when the body is not valid
        JSON, not an object, of unknown type, or missing required fields
    """
    try:
        obj = json.loads(body)
    except (UnicodeDecodeError, ValueError):
        return None

    if not isinstance(obj, dict):
        return None

    try:
        if obj.get('type') == MESSAGE_TYPE_HANDSHAKE:
            return HandshakeMessage.from_dict(obj)
        if obj.get('type') == MESSAGE_TYPE_CHAT:
            return ChatMessage.from_dict(obj)
    except (KeyError, ValueError):
        return None

    return None


def encode_frame(payload: Union[bytes, ControlMessage]) -> bytes:
    """
    Prefix a message (or raw body) with its length header.

    Raises:
        ProtocolError: If the body exceeds MAX_CONTROL_FRAME_BYTES
    """
    body = payload if isinstance(payload, bytes) else payload.to_json()
    if len(body) > MAX_CONTROL_FRAME_BYTES:
        raise ProtocolError(f"Control frame too large: {len(body)} bytes")
    return _FRAME_HEADER.pack(len(body)) + body


def decode_frame_header(header: bytes) -> int:
    """
    Decode a frame header into the announced body length.

    Raises:
        ProtocolError: If the header is short or the length is oversized
    """
    if len(header) != FRAME_HEADER_BYTES:
        raise ProtocolError(f"Frame header must be {FRAME_HEADER_BYTES} bytes, got {len(header)}")
    (length,) = _FRAME_HEADER.unpack(header)
    if length > MAX_CONTROL_FRAME_BYTES:
        raise ProtocolError(f"Announced frame length {length} exceeds {MAX_CONTROL_FRAME_BYTES}")
    return length


async def read_frame(connection) -> Optional[bytes]:
    """
    Read one frame body from a connection.

    Reads exactly the header and the announced body, never more, so bytes
    that follow the frame stay in the connection for the next reader.

    Args:
        connection: PeerConnection to read from

    Returns:
        The frame body, or None if the stream ended at a frame boundary

    Raises:
        ProtocolError: On an oversized length or EOF inside a frame
    """
    try:
        header = await connection.readexactly(FRAME_HEADER_BYTES)
    except asyncio.IncompleteReadError as e:
        if not e.partial:
            return None
        raise ProtocolError(f"Stream ended inside a frame header ({len(e.partial)} bytes)") from None

    length = decode_frame_header(header)
    if length == 0:
        return b''

    try:
        return await connection.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise ProtocolError(
            f"Stream ended inside a {length}-byte frame after {len(e.partial)} bytes"
        ) from None
