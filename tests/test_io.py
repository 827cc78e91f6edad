from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from rastream.core.io import EOF, BytesSource, InvalidOffset, PagedFile
from rastream.core.profiles import LOW_MEMORY_PROFILE, SourceProfile
from rastream.core.stream import BoundedSequentialReader


def make_fixture_file(tmp_path: Path, size: int = 5000) -> Path:
    # Deterministic content: 0..255 repeating
    data = bytes(i % 256 for i in range(size))
    p = tmp_path / "fixture.bin"
    p.write_bytes(data)
    return p


@pytest.mark.parametrize("use_mmap", [True, False])
def test_read_exact_ranges(tmp_path: Path, use_mmap: bool) -> None:
    path = make_fixture_file(tmp_path, size=5000)
    with PagedFile(str(path), use_mmap=use_mmap) as r:
        assert r.uses_mmap is use_mmap
        assert r.read(0, 16) == bytes(range(16))

        off = 1234
        ln = 77
        expected = bytes(i % 256 for i in range(off, off + ln))
        assert r.read(off, ln) == expected


@pytest.mark.parametrize("use_mmap", [True, False])
def test_read_past_eof_truncated(tmp_path: Path, use_mmap: bool) -> None:
    path = make_fixture_file(tmp_path, size=4097)
    with PagedFile(path, use_mmap=use_mmap, page_size=1024) as r:
        start = r.size - 10
        out = r.read(start, 100)
        assert len(out) == 10
        assert out == bytes(i % 256 for i in range(start, r.size))

        assert r.read(r.size, 10) == b""
        assert r.read(5, 0) == b""


@pytest.mark.parametrize("use_mmap", [True, False])
def test_read_at_fills_buffer_window(tmp_path: Path, use_mmap: bool) -> None:
    path = make_fixture_file(tmp_path, size=3000)
    with PagedFile(path, use_mmap=use_mmap, page_size=256, cache_pages=2) as r:
        buf = bytearray(b"\xaa" * 600)
        # Spans several pages in buffered mode
        n = r.read_at(200, buf, 50, 500)
        assert n == 500
        assert bytes(buf[:50]) == b"\xaa" * 50
        assert bytes(buf[50:550]) == bytes(i % 256 for i in range(200, 700))
        assert bytes(buf[550:]) == b"\xaa" * 50

        # Short read at the tail, then EOF
        assert r.read_at(2990, buf, 0, 100) == 10
        assert r.read_at(3000, buf, 0, 100) == EOF
        assert r.read_at(3000, buf, 0, 0) == 0


@pytest.mark.parametrize("use_mmap", [True, False])
def test_skip_at_is_bounded_by_file_size(tmp_path: Path, use_mmap: bool) -> None:
    path = make_fixture_file(tmp_path, size=100)
    with PagedFile(path, use_mmap=use_mmap) as r:
        assert r.skip_at(0, 40) == 40
        assert r.skip_at(90, 40) == 10
        assert r.skip_at(100, 1) == 0
        assert r.skip_at(150, 1) == 0
        assert r.skip_at(10, -3) == 0


@pytest.mark.parametrize("use_mmap", [True, False])
def test_invalid_negative_offset_raises(tmp_path: Path, use_mmap: bool) -> None:
    path = make_fixture_file(tmp_path, size=100)
    with PagedFile(path, use_mmap=use_mmap) as r:
        with pytest.raises(InvalidOffset):
            r.read(-1, 1)
        with pytest.raises(InvalidOffset):
            r.read(0, -1)
        with pytest.raises(InvalidOffset):
            r.read_at(-1, bytearray(4))
        with pytest.raises(InvalidOffset):
            r.skip_at(-1, 4)


def test_file_not_found(tmp_path: Path) -> None:
    missing = tmp_path / "missing.bin"
    with pytest.raises(FileNotFoundError, match="File not found"):
        PagedFile(str(missing))


def test_invalid_tuning_rejected(tmp_path: Path) -> None:
    path = make_fixture_file(tmp_path, size=10)
    with pytest.raises(ValueError):
        PagedFile(path, page_size=0)
    with pytest.raises(ValueError):
        PagedFile(path, cache_pages=0)


def test_empty_file(tmp_path: Path) -> None:
    p = tmp_path / "empty.bin"
    p.write_bytes(b"")
    with PagedFile(p) as r:
        assert r.length() == 0
        assert not r.uses_mmap
        assert r.read_at(0, bytearray(4)) == EOF
        view = BoundedSequentialReader(r)
        assert view.exhausted
        assert view.read() == b""


@pytest.mark.parametrize("use_mmap", [True, False])
def test_closed_file_rejects_io(tmp_path: Path, use_mmap: bool) -> None:
    path = make_fixture_file(tmp_path, size=100)
    r = PagedFile(path, use_mmap=use_mmap)
    r.read(0, 10)
    r.close()
    r.close()
    assert r.closed
    with pytest.raises(ValueError, match="closed"):
        r.read(0, 10)
    with pytest.raises(ValueError, match="closed"):
        r.read_at(0, bytearray(4))
    with pytest.raises(ValueError, match="closed"):
        r.skip_at(0, 4)


def test_from_profile(tmp_path: Path) -> None:
    path = make_fixture_file(tmp_path, size=9000)
    with PagedFile.from_profile(path, LOW_MEMORY_PROFILE) as r:
        assert not r.uses_mmap
        assert r.read(4090, 12) == bytes(i % 256 for i in range(4090, 4102))

    with PagedFile.from_profile(path, SourceProfile(name="mapped")) as r:
        assert r.uses_mmap


def test_bytes_source_contract() -> None:
    src = BytesSource(bytearray(b"0123456789"))
    assert src.length() == 10
    buf = bytearray(6)
    assert src.read_at(7, buf, 1, 5) == 3
    assert bytes(buf) == b"\x00789\x00\x00"
    assert src.read_at(10, buf) == EOF
    assert src.read_at(3, buf, 6) == 0
    assert src.skip_at(8, 5) == 2
    with pytest.raises(InvalidOffset):
        src.read_at(-1, buf)
    src.close()
    assert src.closed
    with pytest.raises(ValueError):
        src.skip_at(0, 1)


@pytest.mark.parametrize("use_mmap", [True, False])
def test_concurrent_views_share_one_file(tmp_path: Path, use_mmap: bool) -> None:
    size = 64 * 1024
    path = make_fixture_file(tmp_path, size=size)
    segment = size // 16
    expected = path.read_bytes()
    start = threading.Barrier(16)

    with PagedFile(path, use_mmap=use_mmap, page_size=1000, cache_pages=3) as shared:

        def consume(index: int) -> bytes:
            view = BoundedSequentialReader(shared, index * segment, segment)
            start.wait()
            parts = []
            while (chunk := view.read(333)):
                parts.append(chunk)
            assert view.exhausted
            return b"".join(parts)

        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(consume, range(16)))

    assert b"".join(results) == expected
