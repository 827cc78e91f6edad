from __future__ import annotations

import logging
import os
import threading
from collections import OrderedDict
from contextlib import suppress
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

try:
    import mmap as _mmap_mod  # type: ignore
except Exception:  # pragma: no cover - platform-specific
    _mmap_mod = None  # type: ignore

if TYPE_CHECKING:
    from rastream.core.profiles import SourceProfile

logger = logging.getLogger(__name__)

# Returned by read_at() when the position is at or past the end of the source.
EOF = -1


class InvalidOffset(ValueError):
    """Raised when an invalid (e.g., negative) offset is provided."""


class RandomAccessSource(Protocol):
    """Positioned-access capability consumed by bounded views.

    Implementations must be safe to call from several threads at once and must
    not keep a cursor of their own between calls.
    """

    def length(self) -> int: ...

    def read_at(
        self, position: int, buffer: bytearray | memoryview, buffer_offset: int = 0, max_len: int | None = None
    ) -> int: ...

    def skip_at(self, position: int, count: int) -> int: ...


def buffer_window(buffer: bytearray | memoryview, buffer_offset: int, length: int | None) -> memoryview:
    """Return a writable byte view of `buffer[buffer_offset:buffer_offset + length]`.

    `length=None` means "to the end of the buffer". Raises ValueError when the
    window does not fit inside the buffer.
    """
    view = memoryview(buffer)
    if view.readonly:
        raise ValueError("buffer is read-only")
    if view.format != "B" or view.ndim != 1:
        view = view.cast("B")
    size = len(view)
    if length is None:
        length = size - buffer_offset
    if buffer_offset < 0 or length < 0 or buffer_offset + length > size:
        raise ValueError(
            f"buffer window out of bounds (buffer_offset={buffer_offset} length={length} size={size})"
        )
    return view[buffer_offset : buffer_offset + length]


def _skippable(position: int, count: int, size: int) -> int:
    if position < 0:
        raise InvalidOffset("position must be >= 0")
    if count <= 0 or position >= size:
        return 0
    return min(count, size - position)


@dataclass(frozen=True)
class _Page:
    index: int
    data: bytes


class PagedFile:
    """Efficient, bounds-checked random-access reader for large binary files.

    Prefers `mmap` for zero-copy slices; falls back to buffered reads with a small LRU page cache.
    The full file is never loaded into memory at once.

    Every positioned operation runs under an internal lock and passes an explicit
    offset, so one instance can back any number of concurrent views.
    """

    def __init__(
        self,
        path: str | os.PathLike[str],
        *,
        page_size: int = 64 * 1024,
        cache_pages: int = 16,
        use_mmap: bool = True,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        if cache_pages <= 0:
            raise ValueError("cache_pages must be positive")

        self._path = os.fspath(path)
        try:
            st = os.stat(self._path)
        except FileNotFoundError:
            raise FileNotFoundError(f"File not found: {self._path}") from None

        self._size = int(st.st_size)
        self._fh = open(self._path, "rb", buffering=0)  # noqa: SIM115
        self._page_size = int(page_size)
        self._cache_limit = int(cache_pages)
        self._cache: OrderedDict[int, _Page] = OrderedDict()
        self._lock = threading.Lock()
        self._closed = False

        self._mmap = None
        if use_mmap and _mmap_mod is not None and self._size > 0:
            try:
                self._mmap = _mmap_mod.mmap(
                    self._fh.fileno(),
                    length=0,
                    access=_mmap_mod.ACCESS_READ,
                )
            except (OSError, ValueError) as exc:
                logger.debug("mmap unavailable for %s (%s); using page cache", self._path, exc)
                self._mmap = None

    @classmethod
    def from_profile(cls, path: str | os.PathLike[str], profile: SourceProfile) -> PagedFile:
        """Open `path` with the tuning parameters of `profile`."""
        return cls(
            path,
            page_size=profile.page_size,
            cache_pages=profile.cache_pages,
            use_mmap=profile.use_mmap,
        )

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._mmap is not None:
                with suppress(BufferError):
                    self._mmap.close()  # type: ignore[union-attr]
                self._mmap = None
            self._cache.clear()
            self._fh.close()

    def __enter__(self) -> PagedFile:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        mode = "mmap" if self._mmap is not None else "paged"
        return f"<PagedFile path={self._path!r} size={self._size} mode={mode}>"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def size(self) -> int:
        """File size in bytes."""
        return self._size

    @property
    def path(self) -> str:
        """File path."""
        return self._path

    @property
    def uses_mmap(self) -> bool:
        return self._mmap is not None

    def length(self) -> int:
        return self._size

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError(f"I/O operation on closed source: {self._path}")

    # Internal: fetch a page (LRU-cached) in buffered mode. Caller holds the lock.
    def _get_page(self, index: int) -> _Page:
        if index in self._cache:
            page = self._cache.pop(index)
            self._cache[index] = page  # move to end (most-recent)
            return page

        start = index * self._page_size
        if start >= self._size:
            data = b""
        else:
            to_read = min(self._page_size, self._size - start)
            self._fh.seek(start)
            data = self._fh.read(to_read)
        page = _Page(index=index, data=data)

        self._cache[index] = page
        if len(self._cache) > self._cache_limit:
            self._cache.popitem(last=False)  # evict LRU
        return page

    def _read_locked(self, offset: int, end: int) -> bytes:
        if self._mmap is not None:
            return bytes(self._mmap[offset:end])  # type: ignore[index]

        result = bytearray()
        pos = offset
        while pos < end:
            page_index = pos // self._page_size
            page = self._get_page(page_index)
            within = pos - (page_index * self._page_size)
            take = min(len(page.data) - within, end - pos)
            if take <= 0:
                break
            result += page.data[within : within + take]
            pos += take
        return bytes(result)

    def read(self, offset: int, length: int) -> bytes:
        """Read up to `length` bytes starting at `offset`.

        - Negative `offset` or `length` raises `InvalidOffset`.
        - If `offset` >= size, returns b"".
        - Reading past EOF returns the truncated data.
        """
        if offset < 0:
            raise InvalidOffset("offset must be >= 0")
        if length < 0:
            raise InvalidOffset("length must be >= 0")
        with self._lock:
            self._check_open()
            if length == 0 or offset >= self._size:
                return b""
            return self._read_locked(offset, min(self._size, offset + length))

    def read_at(
        self, position: int, buffer: bytearray | memoryview, buffer_offset: int = 0, max_len: int | None = None
    ) -> int:
        """Copy up to `max_len` bytes at `position` into `buffer` at `buffer_offset`.

        Returns the number of bytes copied, 0 when `max_len` is 0, or `EOF` when
        `position` is at or past the end of the file.
        """
        if position < 0:
            raise InvalidOffset("position must be >= 0")
        window = buffer_window(buffer, buffer_offset, max_len)
        with self._lock:
            self._check_open()
            if not len(window):
                return 0
            if position >= self._size:
                return EOF
            data = self._read_locked(position, min(self._size, position + len(window)))
        window[: len(data)] = data
        return len(data)

    def skip_at(self, position: int, count: int) -> int:
        """Return how many of `count` bytes can be skipped from `position`."""
        with self._lock:
            self._check_open()
            return _skippable(position, count, self._size)


class BytesSource:
    """Random-access source over an in-memory bytes-like object."""

    def __init__(self, data: bytes | bytearray | memoryview) -> None:
        self._view: memoryview | None = memoryview(data).cast("B")
        self._size = len(self._view)
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<BytesSource size={self._size}>"

    def __enter__(self) -> BytesSource:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._view is None

    def close(self) -> None:
        with self._lock:
            if self._view is not None:
                self._view.release()
                self._view = None

    def _data(self) -> memoryview:
        if self._view is None:
            raise ValueError("I/O operation on closed source")
        return self._view

    def length(self) -> int:
        return self._size

    def read_at(
        self, position: int, buffer: bytearray | memoryview, buffer_offset: int = 0, max_len: int | None = None
    ) -> int:
        if position < 0:
            raise InvalidOffset("position must be >= 0")
        window = buffer_window(buffer, buffer_offset, max_len)
        with self._lock:
            data = self._data()
            if not len(window):
                return 0
            if position >= self._size:
                return EOF
            n = min(len(window), self._size - position)
            window[:n] = data[position : position + n]
        return n

    def skip_at(self, position: int, count: int) -> int:
        with self._lock:
            self._data()
            return _skippable(position, count, self._size)
