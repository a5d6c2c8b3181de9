"""Tar serialization of a file-system subtree, and its extraction.

The packer produces a plain (uncompressed) POSIX tar stream. For an
unchanged file system the stream is byte-for-byte deterministic: entries
are emitted in sorted order and no user/group name lookups are made. The
stream has no seek support; resuming is done by discarding a prefix of it.
"""

import asyncio
import os
import stat
import tarfile
from pathlib import Path
from typing import AsyncIterator, Iterator, List, Optional, Tuple, Union

from common.constants import DEFAULT_CHUNK_SIZE_BYTES, PARTIAL_FILE_NAME
from common.exceptions import ExtractionFailure, SourcePathError
from common.logging_config import get_logger

logger = get_logger(__name__)

BLOCK = tarfile.BLOCKSIZE
RECORD = tarfile.RECORDSIZE
END_OF_ARCHIVE = tarfile.NUL * (BLOCK * 2)

PathLike = Union[str, os.PathLike]


def _padding(size: int) -> int:
    remainder = size % BLOCK
    return BLOCK - remainder if remainder else 0


class ArchivePacker:
    """
    Serializes a file or directory into a tar byte stream.

    A directory is archived as its contents, with names relative to the
    directory itself. A single file is archived as one entry named after
    its basename.
    """

    def __init__(self, source_path: PathLike, chunk_size: int = DEFAULT_CHUNK_SIZE_BYTES):
        """
        Initialize packer.

        Args:
            source_path: File or directory to serialize
            chunk_size: Size of the chunks yielded by the stream

        Raises:
            SourcePathError: If the path does not exist or is not a file or directory
        """
        path = Path(source_path).expanduser()
        if not path.exists():
            raise SourcePathError(f"Source path {path} does not exist")
        if not (path.is_dir() or path.is_file()):
            raise SourcePathError(f"Source path {path} is not a regular file or directory")
        if not os.access(path, os.R_OK):
            raise SourcePathError(f"Source path {path} is not readable")

        self.source_path = path.absolute()
        self.chunk_size = chunk_size

    @property
    def is_directory(self) -> bool:
        return self.source_path.is_dir()

    def entries(self) -> List[Tuple[Path, str]]:
        """
        List (filesystem path, archive name) pairs in stream order.
        """
        if not self.is_directory:
            return [(self.source_path, self.source_path.name)]
        return list(self._walk(self.source_path, ""))

    def _walk(self, directory: Path, prefix: str) -> Iterator[Tuple[Path, str]]:
        try:
            with os.scandir(directory) as it:
                children = sorted(it, key=lambda e: e.name)
        except OSError as e:
            raise SourcePathError(f"Cannot list {directory}: {e}") from e

        for entry in children:
            if entry.name == PARTIAL_FILE_NAME:
                continue
            arcname = f"{prefix}{entry.name}"
            yield Path(entry.path), arcname
            if entry.is_dir(follow_symlinks=False):
                yield from self._walk(Path(entry.path), arcname + "/")

    def _tarinfo(self, path: Path, arcname: str) -> Optional[tarfile.TarInfo]:
        """Build a header for one entry, or None for unsupported file types."""
        st = os.lstat(path)
        info = tarfile.TarInfo(arcname)
        info.mode = stat.S_IMODE(st.st_mode)
        info.mtime = int(st.st_mtime)
        info.uid = st.st_uid
        info.gid = st.st_gid
        info.uname = ""
        info.gname = ""

        if stat.S_ISREG(st.st_mode):
            info.type = tarfile.REGTYPE
            info.size = st.st_size
        elif stat.S_ISDIR(st.st_mode):
            info.type = tarfile.DIRTYPE
        elif stat.S_ISLNK(st.st_mode):
            info.type = tarfile.SYMTYPE
            info.linkname = os.readlink(path)
        else:
            logger.warning(f"Skipping unsupported file type: {path}")
            return None
        return info

    @staticmethod
    def _header(info: tarfile.TarInfo) -> bytes:
        return info.tobuf(tarfile.PAX_FORMAT, tarfile.ENCODING, "surrogateescape")

    def _pieces(self) -> Iterator[bytes]:
        """Yield the raw stream as headers, file blocks and padding."""
        written = 0
        for path, arcname in self.entries():
            try:
                info = self._tarinfo(path, arcname)
            except OSError as e:
                raise SourcePathError(f"Cannot stat {path}: {e}") from e
            if info is None:
                continue

            header = self._header(info)
            written += len(header)
            yield header

            if info.type != tarfile.REGTYPE:
                continue

            remaining = info.size
            try:
                with open(path, 'rb') as f:
                    while remaining > 0:
                        block = f.read(min(self.chunk_size, remaining))
                        if not block:
                            raise SourcePathError(f"{path} shrank while being archived")
                        remaining -= len(block)
                        written += len(block)
                        yield block
            except OSError as e:
                raise SourcePathError(f"Cannot read {path}: {e}") from e

            pad = _padding(info.size)
            if pad:
                written += pad
                yield tarfile.NUL * pad

        written += len(END_OF_ARCHIVE)
        yield END_OF_ARCHIVE
        remainder = written % RECORD
        if remainder:
            yield tarfile.NUL * (RECORD - remainder)

    def iter_chunks(self) -> Iterator[bytes]:
        """
        Yield the archive stream in chunks of chunk_size bytes (the last may be shorter).
        """
        pending = bytearray()
        for piece in self._pieces():
            pending += piece
            while len(pending) >= self.chunk_size:
                yield bytes(pending[:self.chunk_size])
                del pending[:self.chunk_size]
        if pending:
            yield bytes(pending)

    async def stream(self) -> AsyncIterator[bytes]:
        """
        Async view of iter_chunks(); file reads run in the default executor.
        """
        loop = asyncio.get_running_loop()
        chunks = self.iter_chunks()
        try:
            while True:
                chunk = await loop.run_in_executor(None, next, chunks, None)
                if chunk is None:
                    break
                yield chunk
        finally:
            try:
                chunks.close()
            except ValueError as e:
                # Still running in the executor after a cancellation.
                logger.debug(f"Archive generator for {self.source_path} not closed: {e}")

    def archive_size(self) -> int:
        """
        Exact length of the stream for the current file system state.
        """
        total = 0
        for path, arcname in self.entries():
            try:
                info = self._tarinfo(path, arcname)
            except OSError as e:
                raise SourcePathError(f"Cannot stat {path}: {e}") from e
            if info is None:
                continue
            total += len(self._header(info))
            if info.type == tarfile.REGTYPE:
                total += info.size + _padding(info.size)
        total += len(END_OF_ARCHIVE)
        remainder = total % RECORD
        if remainder:
            total += RECORD - remainder
        return total


class ArchiveUnpacker:
    """
    Extracts a tar stream persisted on disk into a destination directory.
    """

    def __init__(self, archive_path: PathLike, destination_dir: PathLike):
        self.archive_path = Path(archive_path)
        self.destination_dir = Path(destination_dir)

    def is_complete(self) -> bool:
        """
        Check whether the persisted stream reaches the end-of-archive marker.

        Returns:
            True if every member is present and the stream is terminated,
            False if the stream stops early (more bytes are expected)

        Raises:
            ExtractionFailure: If the bytes present are not a tar stream
        """
        if not self.archive_path.exists() or self.archive_path.stat().st_size < len(END_OF_ARCHIVE):
            return False

        try:
            tar = tarfile.open(self.archive_path, 'r:')
        except tarfile.TarError as e:
            if self._starts_with_header() and not self._ends_with_marker():
                logger.debug(f"Archive stops inside the first member: {e}")
                return False
            raise ExtractionFailure(f"Corrupt archive {self.archive_path}: {e}") from e

        with tar:
            try:
                for _ in tar:
                    pass
            except tarfile.TarError as e:
                logger.debug(f"Archive stops inside a member header: {e}")
                return False
            end_offset = tar.offset

        with open(self.archive_path, 'rb') as f:
            f.seek(end_offset)
            marker = f.read(len(END_OF_ARCHIVE))
        return marker == END_OF_ARCHIVE

    def _starts_with_header(self) -> bool:
        """True if the first block is a valid tar header (PAX or ustar)."""
        with open(self.archive_path, 'rb') as f:
            block = f.read(BLOCK)
        try:
            tarfile.TarInfo.frombuf(block, tarfile.ENCODING, "surrogateescape")
        except tarfile.TarError:
            return False
        return True

    def _ends_with_marker(self) -> bool:
        with open(self.archive_path, 'rb') as f:
            f.seek(-len(END_OF_ARCHIVE), os.SEEK_END)
            return f.read() == END_OF_ARCHIVE

    def extract(self) -> List[str]:
        """
        Extract every member into the destination directory.

        Returns:
            Names of the extracted members

        Raises:
            ExtractionFailure: If the archive is unreadable or a member cannot
                be written (including members rejected by the data filter)
        """
        try:
            self.destination_dir.mkdir(parents=True, exist_ok=True)
            with tarfile.open(self.archive_path, 'r:') as tar:
                names = tar.getnames()
                tar.extractall(self.destination_dir, filter='data')
        except (tarfile.TarError, OSError) as e:
            raise ExtractionFailure(f"Extraction of {self.archive_path} failed: {e}") from e

        logger.info(f"Extracted {len(names)} entries into {self.destination_dir}")
        return names

    async def is_complete_async(self) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.is_complete)

    async def extract_async(self) -> List[str]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.extract)
