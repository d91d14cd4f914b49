import struct

import pytest

from elfdwarf.dwarf_reader import DWARFError, DWARFReader, Form, StringTables
from elfdwarf.reader import MemReader, ReaderError


def make(data):
    return DWARFReader(MemReader("d", data))


def test_fixed_width_values():
    r = make(struct.pack("<BHI", 0xAB, 0x1234, 0xDEADBEEF))
    assert r.getu8() == 0xAB
    assert r.getu16() == 0x1234
    assert r.getu32() == 0xDEADBEEF
    assert r.offset == 7
    assert r.empty()


def test_getuint_odd_width():
    r = make(struct.pack("<I", 0xABCDEF)[:3])
    assert r.getuint(3) == 0xABCDEF


def test_signed_values():
    r = make(struct.pack("<bh", -5, -300))
    assert r.gets8() == -5
    assert r.getint(2) == -300


def test_bad_int_sizes_raise():
    r = make(bytes(32))
    with pytest.raises(DWARFError):
        r.getuint(17)
    with pytest.raises(DWARFError):
        r.getint(0)


def test_read_past_end_raises():
    with pytest.raises(ReaderError):
        make(b"\x01\x02").getu32()


def test_getlength_32bit():
    r = make(struct.pack("<I", 0x1234))
    assert r.getlength() == (0x1234, 4)


def test_getlength_64bit():
    r = make(struct.pack("<IQ", 0xFFFFFFFF, 0x10))
    assert r.getlength() == (0x10, 8)
    assert r.offset == 12


def test_getlength_reserved():
    assert make(struct.pack("<I", 0xFFFFFFF0)).getlength() == (0, 0)


def test_empty_and_end():
    r = DWARFReader(MemReader("d", b"\x01\x02\x03"), 0, 1)
    assert not r.empty()
    r.getu8()
    assert r.empty()


def test_getstring_advances():
    r = make(b"main\0x\0")
    assert r.getstring() == "main"
    assert r.offset == 5
    assert r.getstring() == "x"
    assert r.empty()


def test_getstring_multibyte_advance():
    encoded = "é€".encode()
    r = make(encoded + b"\0\x07")
    assert r.getstring() == "é€"
    assert r.offset == len(encoded) + 1
    assert r.getu8() == 7


def test_leb128_advances():
    r = make(b"\x80\x01\x7f")
    assert r.getuleb128() == 128
    assert r.offset == 2
    assert r.getsleb128() == -1
    assert r.empty()


def test_skip_and_set_offset():
    r = make(b"\x00\x01\x02\x03")
    r.skip(2)
    assert r.getu8() == 2
    r.offset = 1
    assert r.getu8() == 1
    with pytest.raises(DWARFError):
        r.offset = 5


def test_form_string_inline():
    r = make(b"hello\0")
    assert r.read_form_string(Form.string, StringTables(), 4) == "hello"


def test_form_strp():
    tables = StringTables(debug_str=MemReader("str", b"\0foo\0bar\0"))
    r = make(struct.pack("<I", 5))
    assert r.read_form_string(Form.strp, tables, 4) == "bar"
    assert r.empty()


def test_form_line_strp_64bit():
    tables = StringTables(debug_line_str=MemReader("lstr", b"\0foo\0"))
    r = make(struct.pack("<Q", 1))
    assert r.read_form_string(Form.line_strp, tables, 8) == "foo"
    assert r.offset == 8


def test_form_strx_uses_callback():
    tables = StringTables(strx=lambda idx: f"s{idx}")
    r = make(b"\x03")
    assert r.read_form_string(Form.strx, tables, 4) == "s3"


def test_missing_tables_raise():
    with pytest.raises(DWARFError):
        make(struct.pack("<I", 0)).read_form_string(Form.strp, StringTables(), 4)
    with pytest.raises(DWARFError):
        make(b"\x01").read_form_string(Form.strx, StringTables(), 4)


def test_unsupported_string_form_raises():
    with pytest.raises(DWARFError):
        make(bytes(8)).read_form_string(Form.data4, StringTables(), 4)


def test_read_form_data16_skips():
    r = make(bytes(20))
    r.read_form(Form.data16, StringTables(), 4)
    assert r.offset == 16


def test_read_form_strp_consumes_offset():
    tables = StringTables(debug_str=MemReader("str", b"x\0"))
    r = make(struct.pack("<I", 0) + b"\x09")
    r.read_form(Form.strp, tables, 4)
    assert r.getu8() == 9


def test_read_form_unknown_raises():
    with pytest.raises(DWARFError):
        make(bytes(8)).read_form(Form.addr, StringTables(), 4)


@pytest.mark.parametrize(
    ("form", "data", "expected"),
    [
        (Form.udata, b"\x05", 5),
        (Form.data1, struct.pack("<B", 200), 200),
        (Form.data2, struct.pack("<H", 0xBEEF), 0xBEEF),
        (Form.data4, struct.pack("<I", 0xCAFEF00D), 0xCAFEF00D),
    ],
)
def test_read_form_unsigned(form, data, expected):
    r = make(data)
    assert r.read_form_unsigned(form) == expected
    assert r.empty()


def test_read_form_unsigned_unsupported_raises():
    with pytest.raises(DWARFError):
        make(bytes(8)).read_form_unsigned(Form.data8)


def test_read_form_signed_raises():
    with pytest.raises(DWARFError):
        make(b"\x01").read_form_signed(Form.sdata)