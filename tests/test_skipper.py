"""Tests for dropping the already-received prefix of an archive stream."""

import pytest

from transfer.skipper import ByteOffsetSkipper


def _chunked(data: bytes, size: int):
    return [data[i:i + size] for i in range(0, len(data), size)]


def _run(data: bytes, offset: int, chunk_size: int) -> bytes:
    skipper = ByteOffsetSkipper(offset)
    return b''.join(skipper.feed(chunk) for chunk in _chunked(data, chunk_size))


class TestResumeCorrectness:
    """Output must equal data[offset:] for every offset and chunking."""

    DATA = bytes(range(256)) * 3

    @pytest.mark.parametrize("chunk_size", [1, 7, 512, 768])
    def test_every_offset(self, chunk_size):
        for offset in range(0, len(self.DATA) + 1):
            assert _run(self.DATA, offset, chunk_size) == self.DATA[offset:], offset

    def test_offset_past_end_forwards_nothing(self):
        assert _run(self.DATA, len(self.DATA) + 100, 64) == b''


class TestCounters:
    """Tests for skipped/forwarded bookkeeping."""

    def test_straddling_chunk_is_split(self):
        skipper = ByteOffsetSkipper(5)

        assert skipper.feed(b'abc') == b''
        assert skipper.remaining == 2
        assert skipper.feed(b'defgh') == b'fgh'
        assert skipper.remaining == 0
        assert skipper.skipped == 5
        assert skipper.forwarded == 3

    def test_chunk_ending_exactly_at_offset(self):
        skipper = ByteOffsetSkipper(4)

        assert skipper.feed(b'abcd') == b''
        assert skipper.feed(b'ef') == b'ef'

    def test_zero_offset_passes_everything(self):
        skipper = ByteOffsetSkipper(0)

        assert skipper.feed(b'abc') == b'abc'
        assert skipper.skipped == 0
        assert skipper.forwarded == 3

    def test_negative_offset_rejected(self):
        with pytest.raises(ValueError):
            ByteOffsetSkipper(-1)
