import lzma
import zlib

import pytest

from elfdwarf.reader import (
    InflateReader,
    LzmaReader,
    MemReader,
    NullReader,
    ReaderError,
)


def test_mem_reader_reads_slices():
    r = MemReader("mem", b"hello world")
    assert r.size == len(b"hello world")
    assert r.read(6, 5) == b"world"
    assert r.read(0, 5) == b"hello"


def test_read_clips_at_end():
    r = MemReader("mem", b"hello world")
    assert r.read(6, 100) == b"world"
    assert r.read(20, 4) == b""


def test_read_exact_short_raises():
    r = MemReader("mem", b"abc")
    with pytest.raises(ReaderError):
        r.read_exact(1, 5)


def test_read_strings():
    r = MemReader("mem", b"abc\0def\0")
    assert r.read_string(0) == "abc"
    assert r.read_string(4) == "def"
    assert r.read_string(3) == ""


def test_read_string_unterminated_returns_rest():
    assert MemReader("mem", b"xyz").read_string(0) == "xyz"


def test_read_string_past_end_raises():
    with pytest.raises(ReaderError):
        MemReader("mem", b"xyz").read_string(3)


def test_read_long_string():
    text = "a" * 1000
    assert MemReader("mem", text.encode() + b"\0").read_string(0) == text


def test_uleb128():
    r = MemReader("mem", b"\x02\x80\x01")
    assert r.read_uleb128(0) == (2, 1)
    assert r.read_uleb128(1) == (128, 2)


def test_sleb128():
    r = MemReader("mem", b"\x7f\x80\x7f\x02")
    assert r.read_sleb128(0) == (-1, 1)
    assert r.read_sleb128(1) == (-128, 2)
    assert r.read_sleb128(3) == (2, 1)


def test_truncated_leb128_raises():
    r = MemReader("mem", b"\x80\x80")
    with pytest.raises(ReaderError):
        r.read_uleb128(0)
    with pytest.raises(ReaderError):
        r.read_sleb128(0)


def test_view():
    r = MemReader("mem", b"hello world")
    v = r.view("v", 6, 5)
    assert v.size == 5
    assert v.read(0, 5) == b"world"
    assert str(v) == "v"


def test_view_defaults_to_end():
    v = MemReader("mem", b"hello world").view("tail", 6)
    assert v.read(0, v.size) == b"world"


def test_nested_view():
    r = MemReader("mem", b"0123456789")
    inner = r.view("outer", 2, 6).view("inner", 1, 3)
    assert inner.read(0, 10) == b"345"


def test_null_reader():
    r = NullReader()
    assert r.size == 0
    assert r.read(0, 4) == b""
    with pytest.raises(ReaderError):
        r.read_exact(0, 1)


def test_inflate_round_trip():
    payload = b"some text " * 100
    r = InflateReader(len(payload), MemReader("z", zlib.compress(payload)))
    assert r.size == len(payload)
    assert r.read(0, r.size) == payload


def test_inflate_pads_to_size():
    payload = b"abc"
    r = InflateReader(len(payload) + 4, MemReader("z", zlib.compress(payload)))
    assert r.read(0, r.size) == payload + b"\0" * 4


def test_inflate_too_small_raises():
    payload = b"some text " * 10
    with pytest.raises(ReaderError):
        InflateReader(len(payload) - 1, MemReader("z", zlib.compress(payload)))


def test_inflate_corrupt_raises():
    with pytest.raises(ReaderError):
        InflateReader(10, MemReader("z", b"not zlib data"))


def test_inflate_truncated_raises():
    compressed = zlib.compress(b"some text " * 100)
    with pytest.raises(ReaderError):
        InflateReader(1000, MemReader("z", compressed[: len(compressed) // 2]))


def test_lzma_round_trip():
    payload = b"symbol table " * 50
    r = LzmaReader(MemReader("xz", lzma.compress(payload)))
    assert r.size == len(payload)
    assert r.read(13, 6) == payload[13:19]


def test_lzma_corrupt_raises():
    r = LzmaReader(MemReader("xz", b"garbage"))
    with pytest.raises(ReaderError):
        r.read(0, 1)