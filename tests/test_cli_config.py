"""Tests for CLI configuration module."""

import json

from common.constants import DEFAULT_NICK
from cli.config import Config


def test_config_creates_default_file(tmp_path):
    """Test that config file is created with defaults if missing."""
    config_path = tmp_path / '.wormhole' / 'config.json'
    config = Config(config_path)

    assert config_path.exists()

    assert config.data['peers'] == []
    assert config.data['handshake_timeout'] == 60.0
    assert config.data['reconnect_interval'] == 5.0
    assert config.data['chunk_size'] == 65536
    assert config.data['nick'] == Config.DEFAULT_CONFIG['nick']


def test_config_loads_existing_file(tmp_path):
    """Test loading existing config file."""
    config_path = tmp_path / '.wormhole' / 'config.json'
    config_path.parent.mkdir(parents=True)

    existing_data = {
        'nick': 'alice',
        'listen_port': 7000,
        'peers': ['10.0.0.2:7000'],
    }
    with open(config_path, 'w') as f:
        json.dump(existing_data, f)

    config = Config(config_path)

    assert config.get_nick() == 'alice'
    assert config.get_listen_address()[1] == 7000
    assert config.get_peers() == ['10.0.0.2:7000']

    assert config.get_handshake_timeout() == 60.0
    assert config.get_chunk_size() == 65536


def test_config_save_and_get_nick(temp_config):
    """Test saving and retrieving the nickname."""
    temp_config.set_nick('bob')

    assert temp_config.get_nick() == 'bob'

    with open(temp_config.config_path, 'r') as f:
        data = json.load(f)
    assert data['nick'] == 'bob'


def test_config_blank_nick_is_anonymous(temp_config):
    """Test that a blank nickname falls back to the default."""
    temp_config.data['nick'] = '   '

    assert temp_config.get_nick() == DEFAULT_NICK


def test_config_handles_corrupted_file(tmp_path):
    """Test recovery from corrupted config file."""
    config_path = tmp_path / '.wormhole' / 'config.json'
    config_path.parent.mkdir(parents=True)

    with open(config_path, 'w') as f:
        f.write('{ invalid json content')

    config = Config(config_path)
    assert config.data['peers'] == []
    assert config.data['handshake_timeout'] == 60.0

    backup_path = config_path.with_suffix('.json.bak')
    assert backup_path.exists()
    assert backup_path.read_text() == '{ invalid json content'
    assert json.loads(config_path.read_text())['peers'] == []


def test_config_non_object_root_is_corrupt(tmp_path):
    """Test that a JSON list is treated like a corrupted file."""
    config_path = tmp_path / '.wormhole' / 'config.json'
    config_path.parent.mkdir(parents=True)
    config_path.write_text('[1, 2]')

    config = Config(config_path)

    assert config.get_peers() == []
    assert config_path.with_suffix('.json.bak').exists()


def test_config_add_peer(temp_config):
    """Test that peers are stored once and persisted."""
    temp_config.add_peer('10.0.0.2:7000')
    temp_config.add_peer('10.0.0.2:7000')

    assert temp_config.get_peers() == ['10.0.0.2:7000']
    reloaded = Config(temp_config.config_path)
    assert reloaded.get_peers() == ['10.0.0.2:7000']


def test_config_defaults_are_not_shared(tmp_path):
    """Test that mutating one config's peers leaves the defaults untouched."""
    first = Config(tmp_path / 'one' / 'config.json')
    first.add_peer('10.0.0.3:7000')

    second = Config(tmp_path / 'two' / 'config.json')
    assert second.get_peers() == []


def test_config_handshake_timeout(temp_config):
    """Test handshake timeout retrieval."""
    assert temp_config.get_handshake_timeout() == 60.0

    temp_config.data['handshake_timeout'] = 5
    assert temp_config.get_handshake_timeout() == 5.0

    temp_config.data['handshake_timeout'] = 0
    assert temp_config.get_handshake_timeout() is None


def test_config_log_level(temp_config):
    """Test log level normalization."""
    temp_config.data['log_level'] = 'debug'

    assert temp_config.get_log_level() == 'DEBUG'


def test_config_directory_created_if_missing(tmp_path):
    """Test that config directory is created if it doesn't exist."""
    config_path = tmp_path / 'nested' / 'deep' / '.wormhole' / 'config.json'

    assert not config_path.parent.exists()

    config = Config(config_path)
    assert config_path.parent.exists()
    assert config_path.exists()
