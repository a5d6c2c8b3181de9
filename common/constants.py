"""Project-wide constants (topic suffixes, wire limits, default ports)."""

TOPIC_LENGTH_BYTES: int = 32  # SHA-256 digest
FILE_TOPIC_SUFFIX: str = "-files"

PARTIAL_FILE_NAME: str = ".wormhole_transfer.tar.part"

FRAME_HEADER_BYTES: int = 4  # big-endian unsigned body length
MAX_CONTROL_FRAME_BYTES: int = 64 * 1024

MESSAGE_TYPE_HANDSHAKE: str = "HANDSHAKE"
MESSAGE_TYPE_CHAT: str = "CHAT"

DEFAULT_CHUNK_SIZE_BYTES: int = 64 * 1024
DEFAULT_HANDSHAKE_TIMEOUT_SECONDS: float = 60.0
DEFAULT_RECONNECT_INTERVAL_SECONDS: float = 5.0

DEFAULT_LISTEN_HOST: str = "0.0.0.0"
DEFAULT_LISTEN_PORT: int = 47100
DEFAULT_NICK: str = "Anonymous"

PEER_KEY_LENGTH_BYTES: int = 32
SWARM_PREAMBLE_BYTES: int = TOPIC_LENGTH_BYTES + PEER_KEY_LENGTH_BYTES
SWARM_PREAMBLE_TIMEOUT_SECONDS: float = 10.0
