"""Room-key derivation: a room secret hashed into swarm topics."""

import hashlib
from typing import Tuple

from common.constants import FILE_TOPIC_SUFFIX


def hash_room_key(secret: str) -> bytes:
    """
    Derive a 32-byte topic from a room secret.

    Args:
        secret: Human-chosen room name/secret

    Returns:
        SHA-256 digest of the UTF-8 encoded secret
    """
    return hashlib.sha256(secret.encode('utf-8')).digest()


def room_topics(secret: str) -> Tuple[bytes, bytes]:
    """
    Derive the chat topic and the file-transfer topic for a room.

    Returns:
        (chat_topic, file_topic)
    """
    return hash_room_key(secret), hash_room_key(secret + FILE_TOPIC_SUFFIX)
