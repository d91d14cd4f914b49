"""Decoding of DWARF line-number programs (.debug_line)."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import IntEnum
from itertools import pairwise

from elfdwarf.dwarf_reader import DWARFError, DWARFReader, Form, StringTables

log = logging.getLogger(__name__)

_DEFAULT_ADDRESS_SIZE = 8


class LineContentType(IntEnum):
    """Content type codes used in DWARF 5 directory and file tables."""

    path = 1
    directory_index = 2
    timestamp = 3
    size = 4
    MD5 = 5


class StandardOpcode(IntEnum):
    """Standard line-program opcodes."""

    copy = 1
    advance_pc = 2
    advance_line = 3
    set_file = 4
    set_column = 5
    negate_stmt = 6
    set_basic_block = 7
    const_add_pc = 8
    fixed_advance_pc = 9
    set_prologue_end = 10
    set_epilogue_begin = 11
    set_isa = 12


class ExtendedOpcode(IntEnum):
    """Extended line-program opcodes."""

    end_sequence = 1
    set_address = 2
    define_file = 3
    set_discriminator = 4


@dataclass
class FileEntry:
    """A source file named by the line table."""

    name: str = ""
    dirindex: int = 0
    last_mod: int = 0
    length: int = 0


@dataclass
class LineState:
    """One row of the line-number matrix; ``file`` indexes LineInfo.files."""

    file: int = 1
    addr: int = 0
    line: int = 1
    column: int = 0
    is_stmt: bool = False
    basic_block: bool = False
    end_sequence: bool = False
    prologue_end: bool = False
    epilogue_begin: bool = False
    isa: int = 0
    discriminator: int = 0


def _read_entry_formats(reader: DWARFReader) -> list[tuple[int, Form]]:
    formats = []
    for _ in range(reader.getu8()):
        content_type = reader.getuleb128()
        form_code = reader.getuleb128()
        try:
            form = Form(form_code)
        except ValueError as exc:
            raise DWARFError(f"unknown form {form_code:#x} in line table") from exc
        formats.append((content_type, form))
    return formats


@dataclass
class LineInfo:
    """A decoded line-number table: directories, files and the row matrix."""

    directories: list[str] = field(default_factory=list)
    files: list[FileEntry] = field(default_factory=list)
    matrix: list[LineState] = field(default_factory=list)
    default_is_stmt: bool = False
    opcode_base: int = 0
    opcode_lengths: list[int] = field(default_factory=list)

    def build(self, reader: DWARFReader, strings: StringTables, dwarf_len: int) -> None:
        """Decode one line table at the reader's position."""
        total_length, table_dwarf_len = reader.getlength()
        end = reader.offset + total_length

        version = reader.getu16()
        if version >= 5:
            address_size = reader.getu8()
            reader.getu8()  # segment selector size
        else:
            address_size = _DEFAULT_ADDRESS_SIZE

        header_length = reader.getuint(table_dwarf_len if version > 2 else 4)
        expected_end = header_length + reader.offset
        min_insn_length = reader.getu8()
        if version >= 4:
            reader.getu8()  # maximum operations per instruction
        self.default_is_stmt = reader.getu8() != 0
        line_base = reader.gets8()
        line_range = reader.getu8()
        self.opcode_base = reader.getu8()
        self.opcode_lengths = [0] + [reader.getu8() for _ in range(1, self.opcode_base)]

        if version >= 5:
            self._read_v5_tables(reader, strings, dwarf_len)
        else:
            self._read_legacy_tables(reader)

        diff = expected_end - reader.offset
        if diff != 0:
            log.warning("left %d bytes in line info table of %s", diff, reader.io)
            reader.skip(diff)

        if reader.offset == end:
            return
        self._run_program(reader, end, address_size, min_insn_length,
                          line_base, line_range)

    def _read_v5_tables(self, reader: DWARFReader, strings: StringTables,
                        dwarf_len: int) -> None:
        directory_format = _read_entry_formats(reader)
        for _ in range(reader.getuleb128()):
            path = ""
            for content_type, form in directory_format:
                if content_type == LineContentType.path:
                    path = reader.read_form_string(form, strings, dwarf_len)
                else:
                    reader.read_form(form, strings, dwarf_len)
                    log.debug("unexpected LNCT %d in directory table", content_type)
            if path:
                self.directories.append(path)
            else:
                log.debug("no path in directory table entry")

        file_format = _read_entry_formats(reader)
        for _ in range(reader.getuleb128()):
            entry = FileEntry()
            for content_type, form in file_format:
                if content_type == LineContentType.path:
                    entry.name = reader.read_form_string(form, strings, dwarf_len)
                elif content_type == LineContentType.directory_index:
                    entry.dirindex = reader.read_form_unsigned(form)
                else:
                    reader.read_form(form, strings, dwarf_len)
            self.files.append(entry)

    def _read_legacy_tables(self, reader: DWARFReader) -> None:
        self.directories.append(".")
        while directory := reader.getstring():
            self.directories.append(directory)

        self.files.append(FileEntry("unknown", 0, 0, 0))
        while reader.io.read_exact(reader.offset, 1) != b"\0":
            name = reader.getstring()
            dirindex = reader.getuleb128()
            last_mod = reader.getuleb128()
            length = reader.getuleb128()
            self.files.append(FileEntry(name, dirindex, last_mod, length))
        reader.getu8()

    def _new_state(self) -> LineState:
        return LineState(is_stmt=self.default_is_stmt)

    def _add_row(self, state: LineState) -> None:
        self.matrix.append(replace(state))

    def _run_program(self, reader: DWARFReader, end: int, address_size: int,
                     min_insn_length: int, line_base: int, line_range: int) -> None:
        state = self._new_state()
        while reader.offset < end:
            opcode = reader.getu8()
            if opcode >= self.opcode_base:
                adjusted = opcode - self.opcode_base
                state.addr += (adjusted // line_range) * min_insn_length
                state.line += adjusted % line_range + line_base
                self._add_row(state)
                state.basic_block = False
            elif opcode == 0:
                reader.getuleb128()  # length of the extended opcode
                code = reader.getu8()
                match code:
                    case ExtendedOpcode.end_sequence:
                        state.end_sequence = True
                        self._add_row(state)
                        state = self._new_state()
                    case ExtendedOpcode.set_address:
                        state.addr = reader.getuint(address_size)
                    case ExtendedOpcode.set_discriminator:
                        state.discriminator = reader.getuleb128()
                    case _:
                        raise DWARFError(f"unhandled extended line opcode {code}")
            else:
                match opcode:
                    case StandardOpcode.const_add_pc:
                        state.addr += ((255 - self.opcode_base) // line_range) * min_insn_length
                    case StandardOpcode.advance_pc:
                        state.addr += reader.getuleb128() * min_insn_length
                    case StandardOpcode.fixed_advance_pc:
                        state.addr += reader.getu16() * min_insn_length
                    case StandardOpcode.advance_line:
                        state.line += reader.getsleb128()
                    case StandardOpcode.set_file:
                        state.file = reader.getuleb128()
                    case StandardOpcode.copy:
                        self._add_row(state)
                        state.basic_block = False
                    case StandardOpcode.set_column:
                        state.column = reader.getuleb128()
                    case StandardOpcode.negate_stmt:
                        state.is_stmt = not state.is_stmt
                    case StandardOpcode.set_basic_block:
                        state.basic_block = True
                    case StandardOpcode.set_prologue_end:
                        state.prologue_end = True
                    case StandardOpcode.set_epilogue_begin:
                        state.epilogue_begin = True
                    case StandardOpcode.set_isa:
                        state.isa = reader.getuleb128()
                    case _:
                        raise DWARFError(f"unhandled standard line opcode {opcode}")

    def source_for_address(self, addr: int, verbose: bool = False) -> tuple[str, int] | None:
        """Return (file name, line) for the row covering ``addr``, or None."""
        for row, following in pairwise(self.matrix):
            if row.end_sequence:
                continue
            if row.addr <= addr < following.addr:
                try:
                    entry = self.files[row.file]
                    dirname = self.directories[entry.dirindex]
                except IndexError as exc:
                    raise DWARFError(f"bad file index {row.file} in line table") from exc
                name = f"{dirname}/{entry.name}" if verbose else entry.name
                return name, row.line
        return None


def parse_line_info(reader: DWARFReader, strings: StringTables, dwarf_len: int) -> LineInfo:
    """Decode the line table at the reader's position."""
    info = LineInfo()
    info.build(reader, strings, dwarf_len)
    return info