"""Drops the already-received prefix of an archive stream."""


class ByteOffsetSkipper:
    """
    Forwards only the bytes whose cumulative index is >= skip_bytes.

    Chunks entirely inside the skipped prefix are swallowed, the chunk that
    straddles the offset is split so only its tail passes, and every chunk
    after that passes unchanged.
    """

    def __init__(self, skip_bytes: int):
        if skip_bytes < 0:
            raise ValueError(f"skip_bytes must be non-negative, got {skip_bytes}")
        self.skip_bytes = skip_bytes
        self.skipped = 0
        self.forwarded = 0

    @property
    def remaining(self) -> int:
        """Bytes still to be dropped."""
        return self.skip_bytes - self.skipped

    def feed(self, chunk: bytes) -> bytes:
        """
        Pass one chunk through the skipper.

        Returns:
            The part of the chunk past the skip point (possibly b'')
        """
        remaining = self.remaining
        if remaining > 0:
            if len(chunk) <= remaining:
                self.skipped += len(chunk)
                return b''
            self.skipped += remaining
            chunk = chunk[remaining:]

        self.forwarded += len(chunk)
        return chunk
