"""Parsing of .debug_pubnames units."""
from __future__ import annotations

from dataclasses import dataclass, field

from elfdwarf.dwarf_reader import DWARFReader


@dataclass(frozen=True)
class Pubname:
    """A public name and the offset of its DIE within its unit."""

    offset: int
    name: str


@dataclass
class PubnameUnit:
    """One unit's set of public names."""

    length: int
    version: int
    info_offset: int
    info_length: int
    pubnames: list[Pubname] = field(default_factory=list)


def read_pubname_unit(reader: DWARFReader) -> PubnameUnit:
    """Read one pubnames unit at the reader's current position."""
    length = reader.getu32()
    next_unit = reader.offset + length
    version = reader.getu16()
    info_offset = reader.getu32()
    info_length = reader.getu32()
    pubnames: list[Pubname] = []
    while reader.offset < next_unit:
        offset = reader.getu32()
        if offset == 0:
            break
        pubnames.append(Pubname(offset, reader.getstring()))
    return PubnameUnit(length, version, info_offset, info_length, pubnames)