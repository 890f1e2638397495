"""Streaming ZIP archive writer."""

from __future__ import annotations

import io
import logging
import zipfile
from collections.abc import AsyncIterator, Iterable, Iterator
from dataclasses import dataclass

from starlette.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)

EntryContent = str | bytes | Iterable[str | bytes]
ArchiveEntry = tuple[str, EntryContent]

_SENTINEL = object()


@dataclass(frozen=True)
class ArchiveConfig:
    """Configuration for archive streaming."""

    compress_level: int = 9
    # Bytes of compressed output gathered before a chunk is handed out
    chunk_size: int = 64 * 1024
    # Bytes of entry content gathered before it is fed to the compressor
    write_buffer_size: int = 16 * 1024


class _ChunkSink(io.RawIOBase):
    """Write-only, non-seekable target that hands back what was written."""

    def __init__(self) -> None:
        super().__init__()
        self._chunks: list[bytes] = []
        self._pending = 0
        self._position = 0

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        data = bytes(b)
        if data:
            self._chunks.append(data)
            self._pending += len(data)
            self._position += len(data)
        return len(data)

    def tell(self) -> int:
        return self._position

    @property
    def pending(self) -> int:
        return self._pending

    def take(self) -> bytes:
        data = b"".join(self._chunks)
        self._chunks.clear()
        self._pending = 0
        return data

    def discard(self) -> None:
        self._chunks.clear()
        self._pending = 0


def _iter_content(content: EntryContent) -> Iterator[bytes]:
    if isinstance(content, bytes):
        yield content
    elif isinstance(content, str):
        yield content.encode("utf-8")
    else:
        for piece in content:
            yield piece.encode("utf-8") if isinstance(piece, str) else piece


class ArchiveStream:
    """
    A ZIP archive produced lazily, one chunk per request.

    Iterate it (sync or async) to pipe bytes to a client, or call
    :meth:`read_all` to drain it into memory. Either way :meth:`cleanup`
    runs exactly once: after the last chunk, when the content raises, or
    when the consumer stops early.
    """

    def __init__(self, entries: Iterable[ArchiveEntry], config: ArchiveConfig | None = None):
        self.config = config or ArchiveConfig()
        self._entries = iter(entries)
        self._sink = _ChunkSink()
        self._zip: zipfile.ZipFile | None = None
        self._started = False
        self._cleaned_up = False
        self.entry_count = 0
        self.bytes_out = 0

    @property
    def closed(self) -> bool:
        return self._cleaned_up

    def __iter__(self) -> Iterator[bytes]:
        if self._started:
            raise RuntimeError("Archive stream can only be consumed once")
        self._started = True
        return self._generate()

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._agenerate()

    def _generate(self) -> Iterator[bytes]:
        try:
            self._zip = zipfile.ZipFile(
                self._sink,
                "w",
                compression=zipfile.ZIP_DEFLATED,
                compresslevel=self.config.compress_level,
            )
            for name, content in self._entries:
                with self._zip.open(name, "w") as member:
                    buffer = bytearray()
                    for piece in _iter_content(content):
                        buffer += piece
                        if len(buffer) >= self.config.write_buffer_size:
                            member.write(buffer)
                            buffer.clear()
                            yield from self._drain()
                    if buffer:
                        member.write(buffer)
                self.entry_count += 1
                yield from self._drain()

            self._zip.close()
            self._zip = None
            yield from self._drain(final=True)
            logger.debug(f"Archive finalized: {self.entry_count} entries, {self.bytes_out} bytes")
        finally:
            self.cleanup()

    def _drain(self, final: bool = False) -> Iterator[bytes]:
        if self._sink.pending and (final or self._sink.pending >= self.config.chunk_size):
            chunk = self._sink.take()
            self.bytes_out += len(chunk)
            yield chunk

    async def _agenerate(self) -> AsyncIterator[bytes]:
        iterator = iter(self)
        try:
            while True:
                # Compression is CPU bound; keep it off the event loop
                chunk = await run_in_threadpool(next, iterator, _SENTINEL)
                if chunk is _SENTINEL:
                    break
                yield chunk
        finally:
            iterator.close()
            # A generator closed before its first step never reaches its own finally
            self.cleanup()

    def read_all(self) -> bytes:
        """Drain the whole archive into memory."""
        return b"".join(self)

    async def aread_all(self) -> bytes:
        """Drain the whole archive without blocking the event loop."""
        return await run_in_threadpool(self.read_all)

    def cleanup(self) -> None:
        """Release the writer, buffers and entry source. Safe to call repeatedly."""
        if self._cleaned_up:
            return
        self._cleaned_up = True

        if self._zip is not None:
            try:
                self._zip.close()
            except (ValueError, OSError) as e:
                logger.warning(f"Error closing aborted archive: {e}")
            self._zip = None

        close_entries = getattr(self._entries, "close", None)
        if close_entries is not None:
            close_entries()

        self._sink.discard()
        self._sink.close()
        logger.debug(f"Archive cleanup executed after {self.entry_count} entries")


class ArchiveStreamer:
    """Opens archive streams with a shared configuration."""

    def __init__(self, config: ArchiveConfig | None = None):
        self.config = config or ArchiveConfig()

    def open(self, entries: Iterable[ArchiveEntry]) -> ArchiveStream:
        """
        Start a new archive over the given entries.

        Args:
            entries: (name, content) pairs; content may be text, bytes or an
                iterable of either and is only read while the stream is consumed

        Returns:
            The byte stream; its ``cleanup`` method releases resources
        """
        return ArchiveStream(entries, self.config)
