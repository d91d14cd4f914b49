"""Cursor over a reader that decodes DWARF-encoded values."""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import IntEnum

from elfdwarf.reader import Reader, ReaderError

_MAX_INT_BYTES = 16


class DWARFError(ReaderError):
    """Raised for malformed or unsupported DWARF content."""


class Form(IntEnum):
    """DWARF attribute form codes."""

    addr = 0x01
    block2 = 0x03
    block4 = 0x04
    data2 = 0x05
    data4 = 0x06
    data8 = 0x07
    string = 0x08
    block = 0x09
    block1 = 0x0A
    data1 = 0x0B
    flag = 0x0C
    sdata = 0x0D
    strp = 0x0E
    udata = 0x0F
    ref_addr = 0x10
    ref1 = 0x11
    ref2 = 0x12
    ref4 = 0x13
    ref8 = 0x14
    ref_udata = 0x15
    indirect = 0x16
    sec_offset = 0x17
    exprloc = 0x18
    flag_present = 0x19
    strx = 0x1A
    addrx = 0x1B
    ref_sup4 = 0x1C
    strp_sup = 0x1D
    data16 = 0x1E
    line_strp = 0x1F
    ref_sig8 = 0x20
    implicit_const = 0x21
    loclistx = 0x22
    rnglistx = 0x23
    ref_sup8 = 0x24
    strx1 = 0x25
    strx2 = 0x26
    strx3 = 0x27
    strx4 = 0x28
    addrx1 = 0x29
    addrx2 = 0x2A
    addrx3 = 0x2B
    addrx4 = 0x2C
    GNU_addr_index = 0x1F01
    GNU_str_index = 0x1F02
    GNU_ref_alt = 0x1F20
    GNU_strp_alt = 0x1F21


@dataclass
class StringTables:
    """String sections used to resolve string forms."""

    debug_str: Reader | None = None
    debug_line_str: Reader | None = None
    strx: Callable[[int], str] | None = None


class DWARFReader:
    """A position in a reader, advanced as DWARF values are decoded."""

    def __init__(self, io: Reader, offset: int = 0, end: int | None = None) -> None:
        self.io = io
        self._offset = offset
        self.end = io.size if end is None else end
        self.addr_len = 8

    @property
    def offset(self) -> int:
        return self._offset

    @offset.setter
    def offset(self, value: int) -> None:
        if value > self.end:
            raise DWARFError(f"offset {value} beyond end {self.end}")
        self._offset = value

    def get_bytes(self, size: int) -> bytes:
        data = self.io.read_exact(self._offset, size)
        self._offset += size
        return data

    def getuint(self, length: int) -> int:
        if length > _MAX_INT_BYTES:
            raise DWARFError(f"can't deal with ints of size {length}")
        return int.from_bytes(self.get_bytes(length), "little")

    def getint(self, length: int) -> int:
        if length > _MAX_INT_BYTES or length < 1:
            raise DWARFError(f"can't deal with ints of size {length}")
        return int.from_bytes(self.get_bytes(length), "little", signed=True)

    def getu8(self) -> int:
        return self.getuint(1)

    def gets8(self) -> int:
        return self.getint(1)

    def getu16(self) -> int:
        return self.getuint(2)

    def getu32(self) -> int:
        return self.getuint(4)

    def getuleb128(self) -> int:
        value, length = self.io.read_uleb128(self._offset)
        self._offset += length
        return value

    def getsleb128(self) -> int:
        value, length = self.io.read_sleb128(self._offset)
        self._offset += length
        return value

    def getstring(self) -> str:
        raw = self.io.read_cstring(self._offset)
        self._offset += len(raw) + 1
        return raw.decode("utf-8", "surrogateescape")

    def skip(self, amount: int) -> None:
        self._offset += amount

    def empty(self) -> bool:
        return self._offset == self.end

    def getlength(self) -> tuple[int, int]:
        """Read an initial length; returns (length, offset size in bytes)."""
        length = self.getu32()
        if length == 0xFFFFFFFF:
            return self.getuint(8), 8
        if length >= 0xFFFFFFF0:
            return 0, 0
        return length, 4

    def read_form(self, form: Form, strings: StringTables, dwarf_len: int) -> None:
        """Consume a value of the given form without keeping it."""
        if form in (Form.string, Form.line_strp, Form.strp):
            self.read_form_string(form, strings, dwarf_len)
        elif form == Form.data16:
            self.skip(16)
        else:
            raise DWARFError(f"unsupported form {form!r}")

    def read_form_string(self, form: Form, strings: StringTables, dwarf_len: int) -> str:
        """Read a string-valued attribute of the given form."""
        if form == Form.string:
            return self.getstring()
        if form == Form.line_strp:
            offset = self.getuint(dwarf_len)
            return _table(strings.debug_line_str, ".debug_line_str").read_string(offset)
        if form == Form.strp:
            offset = self.getuint(dwarf_len)
            return _table(strings.debug_str, ".debug_str").read_string(offset)
        if form == Form.strx:
            index = self.getuleb128()
            if strings.strx is None:
                raise DWARFError("no string offsets table, but have strx form")
            return strings.strx(index)
        raise DWARFError(f"unsupported string form {form!r}")

    def read_form_unsigned(self, form: Form) -> int:
        if form == Form.udata:
            return self.getuleb128()
        if form == Form.data1:
            return self.getu8()
        if form == Form.data2:
            return self.getu16()
        if form == Form.data4:
            return self.getu32()
        raise DWARFError(f"unsupported unsigned form {form!r}")

    def read_form_signed(self, form: Form) -> int:
        raise DWARFError(f"unsupported signed form {form!r}")


def _table(reader: Reader | None, name: str) -> Reader:
    if reader is None:
        raise DWARFError(f"no {name} section for string form")
    return reader