"""Bounded, forward-only sequential views over shared random-access sources."""

from __future__ import annotations

import io
import logging
import sys

from rastream.core.io import EOF, InvalidOffset, RandomAccessSource, buffer_window

logger = logging.getLogger(__name__)


class InvalidRange(InvalidOffset):
    """Raised when a view's offset or length falls outside its source."""


class BoundedSequentialReader(io.RawIOBase):
    """Sequential stream over the byte range `[offset, offset + length)` of a source.

    The source is shared, not owned: every access passes an explicit absolute
    position, and `close()` leaves the source untouched. The view keeps one
    unguarded cursor, so a single instance must not be shared between threads;
    independent views over the same source may be used concurrently.

    The cursor only moves forward. Once it reaches the end of the range the
    view is exhausted and every read reports end-of-stream without touching
    the source.
    """

    def __init__(self, source: RandomAccessSource, offset: int = 0, length: int | None = None) -> None:
        """Create a view starting at `offset`.

        `length=None` spans from `offset` to the end of the source. Raises
        `InvalidRange` if the range does not fit inside `[0, source.length()]`.
        """
        super().__init__()
        total = source.length()
        if offset < 0 or offset > total:
            raise InvalidRange(f"offset out of bounds (offset={offset} length={length} source_length={total})")
        if length is None:
            length = total - offset
        if length < 0 or length > total - offset:
            raise InvalidRange(f"length out of bounds (offset={offset} length={length} source_length={total})")

        self._source = source
        self._start = offset
        self._pos = offset
        self._end = offset + length
        logger.debug("Opened %r", self)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} start={self._start} end={self._end} position={self._pos}>"

    @property
    def source(self) -> RandomAccessSource:
        return self._source

    @property
    def start(self) -> int:
        """Absolute offset of the first byte of the view."""
        return self._start

    @property
    def end(self) -> int:
        """Absolute exclusive upper bound of the view."""
        return self._end

    @property
    def length(self) -> int:
        return self._end - self._start

    @property
    def position(self) -> int:
        """Absolute cursor position within the source."""
        return self._pos

    @property
    def exhausted(self) -> bool:
        return self._pos == self._end

    def remaining(self) -> int:
        """Bytes left before the end of the view, clamped to `[0, sys.maxsize]`."""
        return max(0, min(self._end - self._pos, sys.maxsize))

    def _advance(self, count: int) -> None:
        self._pos += count
        if self._pos == self._end:
            logger.debug("Exhausted %r", self)

    # -- reading --------------------------------------------------------------

    def read_into(self, buffer: bytearray | memoryview, buffer_offset: int = 0, length: int | None = None) -> int:
        """Read up to `length` bytes into `buffer` starting at `buffer_offset`.

        Returns the number of bytes read, which may be short, or `EOF` once the
        view is exhausted. A zero-length request on a non-exhausted view
        returns 0. Errors raised by the source propagate unchanged.
        """
        window = buffer_window(buffer, buffer_offset, length)
        if self._pos == self._end:
            return EOF
        if not len(window):
            return 0
        capped = min(len(window), self._end - self._pos)
        n = self._source.read_at(self._pos, window, 0, capped)
        if n > 0:
            self._advance(n)
        return n

    def read_byte(self) -> int | None:
        """Read a single byte, or return None at the end of the view."""
        tmp = bytearray(1)
        if self.read_into(tmp, 0, 1) == 1:
            return tmp[0]
        return None

    def readinto(self, b) -> int:
        n = self.read_into(b)
        return 0 if n == EOF else n

    def read(self, size: int | None = -1) -> bytes:
        if size is None or size < 0:
            size = self._end - self._pos
        buf = bytearray(min(size, self._end - self._pos))
        n = self.read_into(buf) if buf else 0
        if n <= 0:
            return b""
        del buf[n:]
        return bytes(buf)

    def skip(self, n: int) -> int:
        """Skip up to `n` bytes, never past the end of the view.

        Returns the number of bytes actually skipped, as reported by the source.
        """
        if n <= 0 or self._pos == self._end:
            return 0
        skipped = self._source.skip_at(self._pos, min(n, self._end - self._pos))
        if skipped > 0:
            self._advance(skipped)
        return skipped

    # -- stream capabilities --------------------------------------------------

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def writable(self) -> bool:
        return False

    def tell(self) -> int:
        """Bytes consumed since the start of the view."""
        return self._pos - self._start

    def close(self) -> None:
        """Does nothing. The source may still be in use by others."""

    def seek(self, offset, whence=io.SEEK_SET):
        raise io.UnsupportedOperation(f"{type(self).__name__} is forward-only")

    def truncate(self, size=None):
        raise io.UnsupportedOperation(f"{type(self).__name__} is read-only")

    def mark(self, readlimit: int) -> None:
        """Not supported."""
        raise io.UnsupportedOperation("mark is not supported")

    def reset(self) -> None:
        """Not supported."""
        raise io.UnsupportedOperation("reset is not supported")

    def mark_supported(self) -> bool:
        return False
