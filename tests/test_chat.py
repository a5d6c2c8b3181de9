"""Tests for the chat dispatcher."""

import asyncio
import struct

import pytest

from chat.dispatcher import ChatDispatcher
from common.constants import MAX_CONTROL_FRAME_BYTES
from common.protocol import ChatMessage, HandshakeMessage, encode_frame
from swarm.discovery import Discovery
from transfer.coordinator import ConnectionClassifier


async def _next_delivery(dispatcher: ChatDispatcher, timeout: float = 5.0):
    return await asyncio.wait_for(dispatcher.inbox.get(), timeout)


class TestBroadcast:
    """Tests for sending chat lines."""

    @pytest.mark.asyncio
    async def test_echo_and_delivery(self, connection_pair):
        local, remote = connection_pair
        alice = ChatDispatcher(nick='alice')
        bob = ChatDispatcher(nick='bob')
        assert alice.attach(local)
        assert bob.attach(remote)

        sent = await alice.broadcast('hello room')

        echo = await _next_delivery(alice)
        assert echo.local
        assert echo.message == sent

        delivered = await _next_delivery(bob)
        assert not delivered.local
        assert delivered.message.nick == 'alice'
        assert delivered.message.text == 'hello room'
        assert delivered.peer_id == remote.peer_id
        await alice.close()
        await bob.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "\n"])
    async def test_empty_text_is_ignored(self, connection_pair, text):
        local, _ = connection_pair
        alice = ChatDispatcher(nick='alice')
        alice.attach(local)

        assert await alice.broadcast(text) is None
        assert alice.inbox.empty()
        await alice.close()

    @pytest.mark.asyncio
    async def test_failed_peer_does_not_block_others(self, connection_factory):
        alice = ChatDispatcher(nick='alice')
        broken_local, _ = await connection_factory()
        good_local, good_remote = await connection_factory()
        alice.attach(broken_local)
        alice.attach(good_local)
        bob = ChatDispatcher(nick='bob')
        bob.attach(good_remote)

        broken_local.writer.close()
        await alice.broadcast('still here')

        delivered = await _next_delivery(bob)
        assert delivered.message.text == 'still here'
        await alice.close()
        await bob.close()

    @pytest.mark.asyncio
    async def test_nick_change_applies_to_next_message(self, connection_pair):
        local, remote = connection_pair
        alice = ChatDispatcher(nick='alice')
        bob = ChatDispatcher(nick='bob')
        alice.attach(local)
        bob.attach(remote)

        alice.nick = 'alicia'
        await alice.broadcast('renamed')

        assert (await _next_delivery(bob)).message.nick == 'alicia'
        await alice.close()
        await bob.close()


class TestReading:
    """Tests for the per-connection reader."""

    @pytest.mark.asyncio
    async def test_invalid_frames_are_dropped(self, connection_pair):
        local, remote = connection_pair
        dispatcher = ChatDispatcher()
        dispatcher.attach(local)

        await remote.write(encode_frame(b'garbage'))
        await remote.write(encode_frame(HandshakeMessage(received_bytes=10)))
        await remote.write(encode_frame(b'{"type": "CHAT", "nick": "x"}'))
        await remote.write(encode_frame(ChatMessage(nick='bob', text='valid', timestamp=1)))

        delivery = await _next_delivery(dispatcher)
        assert delivery.message == ChatMessage(nick='bob', text='valid', timestamp=1)
        assert dispatcher.inbox.empty()
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_oversized_frame_stops_reader(self, connection_pair, wait_until):
        local, remote = connection_pair
        classifier = ConnectionClassifier()
        dispatcher = ChatDispatcher(classifier)
        dispatcher.attach(local)
        assert classifier.is_chat(local)

        await remote.write(struct.pack('>I', MAX_CONTROL_FRAME_BYTES + 1))

        await wait_until(lambda: not classifier.is_chat(local))
        assert dispatcher.inbox.empty()
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_peer_eof_closes_connection(self, connection_pair, wait_until):
        local, remote = connection_pair
        dispatcher = ChatDispatcher()
        dispatcher.attach(local)

        await remote.end()

        await wait_until(lambda: local.is_closed)
        assert dispatcher.connections == []
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_closed_connections_are_forgotten(self, connection_factory, wait_until):
        dispatcher = ChatDispatcher()
        for _ in range(5):
            local, remote = await connection_factory()
            dispatcher.attach(local)
            remote.close()
            await wait_until(lambda: local.connection_id not in dispatcher._readers)

        assert dispatcher._connections == {}
        assert dispatcher._readers == {}
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_attach_is_idempotent(self, connection_pair):
        local, _ = connection_pair
        dispatcher = ChatDispatcher()

        assert dispatcher.attach(local)
        assert not dispatcher.attach(local)
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_transfer_connection_is_not_attached(self, connection_pair):
        local, _ = connection_pair
        classifier = ConnectionClassifier()
        classifier.mark_transfer(local)

        assert not ChatDispatcher(classifier).attach(local)
        assert not classifier.is_chat(local)


class TestFollow:
    """Tests for following a connection pool."""

    @pytest.mark.asyncio
    async def test_picks_up_later_connections(self, connection_factory, wait_until):
        pool = Discovery(b'\x03' * 32)
        first_local, _ = await connection_factory()
        pool.add(first_local)

        dispatcher = ChatDispatcher()
        dispatcher.follow(pool)
        assert len(dispatcher.connections) == 1

        second_local, second_remote = await connection_factory()
        pool.add(second_local)
        await wait_until(lambda: len(dispatcher.connections) == 2)

        await second_remote.write(encode_frame(ChatMessage(nick='late', text='joined', timestamp=2)))
        assert (await _next_delivery(dispatcher)).message.nick == 'late'

        await dispatcher.close()
        await pool.close()
