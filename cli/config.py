"""Configuration management for the Wormhole CLI."""

import json
import os
import shutil
from pathlib import Path
from typing import List, Optional, Tuple

from common.constants import (
    DEFAULT_CHUNK_SIZE_BYTES,
    DEFAULT_HANDSHAKE_TIMEOUT_SECONDS,
    DEFAULT_LISTEN_HOST,
    DEFAULT_LISTEN_PORT,
    DEFAULT_NICK,
    DEFAULT_RECONNECT_INTERVAL_SECONDS,
)
from common.logging_config import get_logger

logger = get_logger(__name__)


class Config:
    """Manages CLI configuration stored in JSON file."""

    DEFAULT_CONFIG = {
        "nick": os.environ.get("WORMHOLE_NICK", DEFAULT_NICK),
        "listen_host": os.environ.get("WORMHOLE_LISTEN_HOST", DEFAULT_LISTEN_HOST),
        "listen_port": int(os.environ.get("WORMHOLE_LISTEN_PORT", str(DEFAULT_LISTEN_PORT))),
        "peers": [],
        "handshake_timeout": DEFAULT_HANDSHAKE_TIMEOUT_SECONDS,
        "reconnect_interval": DEFAULT_RECONNECT_INTERVAL_SECONDS,
        "chunk_size": DEFAULT_CHUNK_SIZE_BYTES,
        "log_level": "WARNING",
    }

    def __init__(self, config_path: Path):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config JSON file (typically ~/.wormhole/config.json)
        """
        self.config_path = config_path
        self.data = self._load()

    def _defaults(self) -> dict:
        config = self.DEFAULT_CONFIG.copy()
        config["peers"] = list(config["peers"])
        return config

    def _load(self) -> dict:
        """
        Load configuration from file, creating defaults if necessary.

        Returns:
            Configuration dictionary
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            import tempfile
            self.config_path = Path(tempfile.gettempdir()) / '.wormhole' / 'config.json'
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError("config root must be an object")
                config = self._defaults()
                config.update(data)
                return config
            except (ValueError, OSError) as e:
                backup_path = self.config_path.with_suffix('.json.bak')
                logger.warning(f"Config {self.config_path} is unreadable ({e}), backing up to {backup_path}")
                try:
                    shutil.copy(self.config_path, backup_path)
                except OSError as copy_error:
                    logger.warning(f"Could not back up config: {copy_error}")
                    return self._defaults()

        config = self._defaults()
        try:
            with open(self.config_path, 'w') as f:
                json.dump(config, f, indent=2)
        except OSError as e:
            logger.warning(f"Could not write default config: {e}")
        return config

    def save(self) -> None:
        """Save current configuration to file."""
        try:
            with open(self.config_path, 'w') as f:
                json.dump(self.data, f, indent=2)
        except OSError as e:
            logger.warning(f"Could not save config: {e}")

    def get_nick(self) -> str:
        """
        Get the nickname stamped on chat messages.

        Returns:
            Nickname, "Anonymous" when unset or blank
        """
        nick = self.data.get('nick')
        if not isinstance(nick, str) or not nick.strip():
            return DEFAULT_NICK
        return nick

    def set_nick(self, nick: str) -> None:
        """
        Set nickname and save to file.

        Args:
            nick: New nickname
        """
        self.data['nick'] = nick
        self.save()

    def get_listen_address(self) -> Tuple[str, int]:
        """
        Get the address the swarm listens on.

        Returns:
            (host, port) tuple
        """
        host = self.data.get('listen_host', DEFAULT_LISTEN_HOST)
        port = int(self.data.get('listen_port', DEFAULT_LISTEN_PORT))
        return host, port

    def get_peers(self) -> List[str]:
        """
        Get static peer addresses.

        Returns:
            List of "HOST:PORT" strings
        """
        return list(self.data.get('peers') or [])

    def add_peer(self, address: str) -> None:
        """
        Remember a peer address and save to file.

        Args:
            address: "HOST:PORT" string
        """
        peers = self.get_peers()
        if address not in peers:
            peers.append(address)
            self.data['peers'] = peers
            self.save()

    def get_handshake_timeout(self) -> Optional[float]:
        """
        Get the sender's handshake timeout.

        Returns:
            Timeout in seconds, or None when disabled (0)
        """
        timeout = self.data.get('handshake_timeout', DEFAULT_HANDSHAKE_TIMEOUT_SECONDS)
        return float(timeout) if timeout else None

    def get_reconnect_interval(self) -> float:
        return float(self.data.get('reconnect_interval', DEFAULT_RECONNECT_INTERVAL_SECONDS))

    def get_chunk_size(self) -> int:
        return int(self.data.get('chunk_size', DEFAULT_CHUNK_SIZE_BYTES))

    def get_log_level(self) -> str:
        return str(self.data.get('log_level', 'WARNING')).upper()
