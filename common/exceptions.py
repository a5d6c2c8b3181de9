"""Custom exception classes shared by the transfer, chat and swarm layers."""


class WormholeException(Exception):
    """
    Base exception class for all Wormhole errors.
    """
    pass


class ProtocolError(WormholeException):
    """
    Raised when a control frame header is malformed or announces an oversized body.
    """
    pass


class HandshakeFailure(WormholeException):
    """
    Raised when a connection closes, errors or times out before a valid
    handshake message was parsed. No payload is written after this.
    """
    pass


class HandshakeTimeout(HandshakeFailure):
    """
    Raised when no handshake arrives within the configured timeout. The
    connection itself is still usable.
    """
    pass


class ConnectionFailure(WormholeException):
    """
    Raised when the peer connection errors or closes in the middle of a transfer.
    """
    pass


class ExtractionFailure(WormholeException):
    """
    Raised when a completely received archive cannot be extracted.
    """
    pass


class SourcePathError(WormholeException):
    """
    Raised when the path to send does not exist or cannot be read.
    """
    pass


class DestinationError(WormholeException):
    """
    Raised when the receive directory cannot be created or written.
    """
    pass


class ConnectionBusyError(WormholeException):
    """
    Raised when a connection is claimed for transfer while a chat reader owns
    it, or the other way around.
    """
    pass


class NotInRoomError(WormholeException):
    """
    Raised when a room operation is attempted before joining a room.
    """
    pass
