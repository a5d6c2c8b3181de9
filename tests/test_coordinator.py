"""Tests for connection classification and transfer fan-out."""

import asyncio

import pytest

from chat.dispatcher import ChatDispatcher
from common.exceptions import ConnectionBusyError, DestinationError, SourcePathError
from common.types import SessionState
from swarm.discovery import Discovery
from transfer.coordinator import ConnectionClassifier, TransferCoordinator
from transfer.session import ReceiverSession, SenderSession

TOPIC = b'\x01' * 32


class TestConnectionClassifier:
    """Tests for ConnectionClassifier."""

    @pytest.mark.asyncio
    async def test_transfer_and_chat_are_exclusive(self, connection_pair):
        first, second = connection_pair
        classifier = ConnectionClassifier()

        classifier.mark_transfer(first)
        classifier.mark_chat(second)

        with pytest.raises(ConnectionBusyError):
            classifier.mark_chat(first)
        with pytest.raises(ConnectionBusyError):
            classifier.mark_transfer(second)
        with pytest.raises(ConnectionBusyError):
            classifier.mark_transfer(first)

    @pytest.mark.asyncio
    async def test_release(self, connection_pair):
        first, _ = connection_pair
        classifier = ConnectionClassifier()
        classifier.mark_transfer(first)

        assert classifier.transfer_connections() == {first.connection_id}
        classifier.release(first)

        assert not classifier.is_transfer(first)
        assert classifier.transfer_connections() == set()
        classifier.mark_chat(first)
        assert classifier.is_chat(first)
        classifier.unmark_chat(first)
        assert not classifier.is_chat(first)


class TestSendFanOut:
    """Tests for start_send."""

    @pytest.mark.asyncio
    async def test_sends_to_every_connection(
        self, connection_factory, sample_tree, sample_archive, tmp_path, wait_until
    ):
        discovery = Discovery(TOPIC)
        coordinator = TransferCoordinator(discovery, handshake_timeout=5)
        receivers = []
        for index in range(2):
            local, remote = await connection_factory()
            discovery.add(local)
            receivers.append(ReceiverSession(remote, tmp_path / f'out{index}'))

        command = coordinator.start_send(sample_tree)
        results = await asyncio.wait_for(asyncio.gather(*(r.run() for r in receivers)), 10)

        assert all(result.ok for result in results)
        for index in range(2):
            assert (tmp_path / f'out{index}' / 'b' / 'c.txt').read_text() == 'xyz'
        assert len(command.sessions) == 2
        assert command.bytes_total == 2 * len(sample_archive)
        await wait_until(lambda: coordinator.classifier.transfer_connections() == set())
        await coordinator.shutdown()
        await discovery.close()

    @pytest.mark.asyncio
    async def test_attaches_to_later_connections(self, connection_pair, sample_tree, tmp_path):
        local, remote = connection_pair
        discovery = Discovery(TOPIC)
        coordinator = TransferCoordinator(discovery, handshake_timeout=5)
        command = coordinator.start_send(sample_tree)

        discovery.add(local)
        result = await asyncio.wait_for(ReceiverSession(remote, tmp_path / 'out').run(), 10)

        assert result.ok
        assert (await command.wait_finished(timeout=5)).ok
        await coordinator.shutdown()
        await discovery.close()

    @pytest.mark.asyncio
    async def test_invalid_source_fails_eagerly(self, tmp_path):
        discovery = Discovery(TOPIC)
        coordinator = TransferCoordinator(discovery)

        with pytest.raises(SourcePathError):
            coordinator.start_send(tmp_path / 'missing')
        assert coordinator.commands == []

    @pytest.mark.asyncio
    async def test_failed_session_releases_and_closes(self, connection_pair, sample_tree, wait_until):
        local, remote = connection_pair
        discovery = Discovery(TOPIC)
        discovery.add(local)
        coordinator = TransferCoordinator(discovery, handshake_timeout=5)
        command = coordinator.start_send(sample_tree)

        remote.close()
        await wait_until(lambda: len(command.results) == 1)

        assert command.results[0].state == SessionState.ERRORED
        assert local.is_closed
        assert not coordinator.classifier.is_transfer(local)
        await coordinator.shutdown()
        await discovery.close()

    @pytest.mark.asyncio
    async def test_late_receiver_is_served_after_handshake_timeout(
        self, connection_pair, sample_tree, tmp_path, wait_until
    ):
        local, remote = connection_pair
        discovery = Discovery(TOPIC)
        discovery.add(local)
        coordinator = TransferCoordinator(discovery, handshake_timeout=0.2)
        command = coordinator.start_send(sample_tree)

        await wait_until(lambda: len(command.results) >= 1)
        assert command.results[0].state == SessionState.ERRORED
        assert not local.is_closed
        assert command.active

        result = await asyncio.wait_for(ReceiverSession(remote, tmp_path / 'out').run(), 5)

        assert result.ok
        assert (tmp_path / 'out' / 'a.txt').read_text() == 'abc'
        assert (await command.wait_finished(timeout=5)).ok
        assert len(command.sessions) >= 2
        await coordinator.shutdown()
        await discovery.close()


class TestReceive:
    """Tests for start_receive."""

    @pytest.mark.asyncio
    async def test_completes_after_first_finish(self, connection_pair, sample_tree, tmp_path):
        local, remote = connection_pair
        discovery = Discovery(TOPIC)
        discovery.add(local)
        coordinator = TransferCoordinator(discovery)
        destination = tmp_path / 'nested' / 'out'

        command = coordinator.start_receive(destination)
        assert destination.is_dir()
        sent = await asyncio.wait_for(SenderSession(remote, sample_tree).run(), 10)
        received = await command.wait_finished(timeout=10)

        assert sent.ok and received.ok
        assert (destination / 'a.txt').read_text() == 'abc'
        assert not command.active
        assert coordinator.commands == []
        assert coordinator._destination_locks == {}
        await discovery.close()

    @pytest.mark.asyncio
    async def test_destination_lock_serializes_sessions(self, connection_factory, sample_tree, tmp_path):
        discovery = Discovery(TOPIC)
        coordinator = TransferCoordinator(discovery)
        senders = []
        for _ in range(2):
            local, remote = await connection_factory()
            discovery.add(local)
            senders.append(SenderSession(remote, sample_tree, handshake_timeout=0.5))

        command = coordinator.start_receive(tmp_path / 'out')
        results = await asyncio.wait_for(asyncio.gather(*(s.run() for s in senders)), 10)
        await command.wait_finished(timeout=5)

        assert sorted(r.state for r in results) == sorted([SessionState.FINISHED, SessionState.ERRORED])
        assert [s.state for s in command.sessions].count(SessionState.IDLE) == 1
        assert (tmp_path / 'out' / 'b' / 'c.txt').read_text() == 'xyz'
        await discovery.close()

    @pytest.mark.asyncio
    async def test_unusable_destination(self, tmp_path):
        blocker = tmp_path / 'file'
        blocker.write_text('not a directory')
        coordinator = TransferCoordinator(Discovery(TOPIC))

        with pytest.raises(DestinationError):
            coordinator.start_receive(blocker / 'out')

    @pytest.mark.asyncio
    async def test_cancel_stops_sessions(self, connection_pair, tmp_path, wait_until):
        local, _ = connection_pair
        discovery = Discovery(TOPIC)
        discovery.add(local)
        coordinator = TransferCoordinator(discovery)
        command = coordinator.start_receive(tmp_path / 'out')
        await wait_until(lambda: command.sessions and command.sessions[0].state == SessionState.STREAMING)

        await coordinator.cancel(command)

        assert not command.active
        assert coordinator.classifier.transfer_connections() == set()
        assert command.sessions[0].state == SessionState.CLOSED
        assert coordinator._destination_locks == {}
        await discovery.close()


class TestIsolation:
    """Chat and transfer traffic never see each other's bytes."""

    @pytest.mark.asyncio
    async def test_concurrent_chat_and_transfer(self, connection_factory, sample_tree, tmp_path, wait_until):
        classifier = ConnectionClassifier()
        file_pool = Discovery(TOPIC)
        chat_pool = Discovery(b'\x02' * 32)

        file_local, file_remote = await connection_factory()
        chat_local, chat_remote = await connection_factory()
        file_pool.add(file_local)
        chat_pool.add(chat_local)

        local_chat = ChatDispatcher(classifier, nick='alice')
        local_chat.follow(chat_pool)
        remote_chat = ChatDispatcher(nick='bob')
        remote_chat.attach(chat_remote)
        coordinator = TransferCoordinator(file_pool, classifier=classifier)

        command = coordinator.start_receive(tmp_path / 'out')
        assert classifier.is_transfer(file_local)
        assert not local_chat.attach(file_local)

        sender = asyncio.create_task(SenderSession(file_remote, sample_tree).run())
        await remote_chat.broadcast('hello over chat')
        await local_chat.broadcast('hello back')

        assert (await asyncio.wait_for(sender, 10)).ok
        await command.wait_finished(timeout=10)
        await wait_until(lambda: local_chat.inbox.qsize() == 2 and remote_chat.inbox.qsize() == 2)

        texts = sorted(local_chat.inbox.get_nowait().message.text for _ in range(2))
        assert texts == ['hello back', 'hello over chat']
        assert (tmp_path / 'out' / 'a.txt').read_text() == 'abc'

        await local_chat.close()
        await remote_chat.close()
        await file_pool.close()
        await chat_pool.close()
