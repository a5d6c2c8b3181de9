"""Shared pytest fixtures for all tests."""

import asyncio

import pytest
import pytest_asyncio

from cli.config import Config
from swarm.connection import PeerConnection
from transfer.archive import ArchivePacker


@pytest.fixture
def temp_config_dir(tmp_path):
    """
    Create temporary config directory.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to temporary .wormhole directory
    """
    config_dir = tmp_path / '.wormhole'
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def temp_config(temp_config_dir):
    """
    Create temporary config instance.

    Args:
        temp_config_dir: Temporary config directory fixture

    Returns:
        Config instance with temp config file
    """
    return Config(temp_config_dir / 'config.json')


@pytest.fixture
def sample_tree(tmp_path):
    """
    Create the reference source folder: a.txt == "abc" and b/c.txt == "xyz".

    Returns:
        Path to the folder
    """
    root = tmp_path / 'source'
    (root / 'b').mkdir(parents=True)
    (root / 'a.txt').write_text('abc')
    (root / 'b' / 'c.txt').write_text('xyz')
    return root


@pytest.fixture
def sample_archive(sample_tree):
    """
    Full archive stream of sample_tree.

    Returns:
        Archive bytes
    """
    return b''.join(ArchivePacker(sample_tree).iter_chunks())


@pytest_asyncio.fixture
async def connection_factory():
    """
    Build loopback TCP connection pairs.

    Returns:
        Async callable returning (initiator, acceptor) PeerConnections; every
        pair is closed on teardown
    """
    servers = []
    connections = []

    async def make_pair():
        accepted = asyncio.get_running_loop().create_future()

        async def on_accept(reader, writer):
            accepted.set_result(PeerConnection(reader, writer, peer_id='bb' * 32))

        server = await asyncio.start_server(on_accept, '127.0.0.1', 0)
        servers.append(server)
        port = server.sockets[0].getsockname()[1]

        reader, writer = await asyncio.open_connection('127.0.0.1', port)
        initiator = PeerConnection(reader, writer, peer_id='aa' * 32, initiator=True)
        acceptor = await asyncio.wait_for(accepted, timeout=5)
        connections.extend([initiator, acceptor])
        return initiator, acceptor

    yield make_pair

    for connection in connections:
        connection.close()
    for server in servers:
        server.close()


@pytest_asyncio.fixture
async def connection_pair(connection_factory):
    """
    One loopback connection pair.

    Returns:
        (initiator, acceptor) tuple
    """
    return await connection_factory()


async def _wait_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(interval)


@pytest.fixture
def wait_until():
    """
    Poll a predicate until it returns True or fail the test.

    Returns:
        Async callable wait_until(predicate, timeout=5.0)
    """
    return _wait_until
