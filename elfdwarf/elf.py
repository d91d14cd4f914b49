"""ELF images: sections, segments, notes, symbols and separate debug files."""
from __future__ import annotations

import bisect
import logging
import os
import struct
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

from elfdwarf.elfstructs import (
    GNU_BUILD_ID,
    PT_INTERP,
    PT_LOAD,
    PT_NOTE,
    SHF_ALLOC,
    SHF_COMPRESSED,
    SHN_UNDEF,
    SHN_XINDEX,
    STT_NOTYPE,
    Chdr,
    DynTag,
    Dyn,
    Ehdr,
    GnuHash,
    NoteHeader,
    Phdr,
    SectionType,
    Shdr,
    Sym,
    SymbolSection,
    SymHash,
    VersionIdx,
    roundup2,
    undef_symbol,
)
from elfdwarf.reader import (
    InflateReader,
    LzmaReader,
    MemReader,
    NullReader,
    Reader,
    ReaderError,
)

log = logging.getLogger(__name__)

DEFAULT_DEBUG_DIRS = ("/usr/lib/debug",)

_ELFCLASS64 = 2
_ELFDATA2LSB = 1
_MASK64 = (1 << 64) - 1
_NO_VERSION = 0xFFFF
_MISSING = object()

_VERNEED = struct.Struct("<HHIII")
_VERNAUX = struct.Struct("<IHHII")
_VERDEF = struct.Struct("<HHHHIII")
_VERDAUX = struct.Struct("<II")


class ElfError(ReaderError):
    """Raised for malformed or unsupported ELF content."""


class Section:
    """A section header together with lazily-decoded access to its content."""

    def __init__(self, elf: ElfObject | None = None, name: str = "null",
                 shdr: Shdr | None = None) -> None:
        self.elf = elf
        self.name = name
        self.shdr = shdr if shdr is not None else Shdr(sh_type=SectionType.NULL)
        self._io: Reader | None = None

    def __bool__(self) -> bool:
        return self.shdr.sh_type != SectionType.NULL

    def __repr__(self) -> str:
        return f"Section({self.name!r}, type={self.shdr.sh_type:#x})"

    @property
    def io(self) -> Reader:
        """The section's content, decompressed where it is compressed."""
        if self._io is None:
            self._io = self._open()
        return self._io

    def _open(self) -> Reader:
        if not self or self.elf is None:
            return NullReader()
        raw = self.elf.io.view(self.name, self.shdr.sh_offset, self.shdr.sh_size)
        if self.shdr.sh_flags & SHF_COMPRESSED:
            chdr = Chdr.read(raw, 0)
            return InflateReader(
                chdr.ch_size,
                raw.view("ZLIB compressed content after chdr", Chdr.SIZE,
                         max(self.shdr.sh_size - Chdr.SIZE, 0)),
            )
        if self.name.startswith(".zdebug_"):
            signature = raw.read(0, 12)
            if len(signature) == 12 and signature[:4] == b"ZLIB":
                size = int.from_bytes(signature[4:12], "big")
                return InflateReader(
                    size, raw.view("ZLIB compressed content after magic signature", 12))
            return NullReader()
        return raw


class NoteDesc:
    """A note: a name, a type and a descriptor."""

    def __init__(self, note: NoteHeader, io: Reader) -> None:
        self.note = note
        self.io = io

    @property
    def type(self) -> int:
        return self.note.n_type

    def name(self) -> str:
        """The note's owner name."""
        return self.io.read_string(NoteHeader.SIZE)

    def data(self) -> Reader:
        """A reader over the note's descriptor."""
        return self.io.view("note descriptor",
                            NoteHeader.SIZE + roundup2(self.note.n_namesz, 4),
                            self.note.n_descsz)


@dataclass
class SymbolVersioning:
    """Version names by index, and the version indices needed from each file."""

    versions: dict[int, str] = field(default_factory=dict)
    files: dict[str, list[int]] = field(default_factory=dict)


class ElfObject:
    """An ELF image: a shared library, executable, or object file."""

    def __init__(self, io: Reader, is_debug: bool = False,
                 debug_dirs: Iterable[str | Path] | None = None) -> None:
        self.io = io
        self.debug_dirs = tuple(DEFAULT_DEBUG_DIRS if debug_dirs is None else debug_dirs)
        try:
            self.header = Ehdr.read(io, 0)
        except ReaderError as exc:
            raise ElfError(f"{io}: content is not an ELF image") from exc
        if not self.header.is_elf:
            raise ElfError(f"{io}: content is not an ELF image")
        if (self.header.e_ident[4] != _ELFCLASS64
                or self.header.e_ident[5] != _ELFDATA2LSB):
            raise ElfError(f"{io}: only little-endian 64-bit ELF images are supported")

        self.dynamic: dict[int, list[Dyn]] = {}
        self.sections: list[Section] = []
        self._named: dict[str, int] = {}
        self._program_headers: dict[int, list[Phdr]] = {}
        self._debug_loaded = is_debug
        self._debug_object: ElfObject | None = None
        self._debug_data: object = _MISSING
        self._symbol_versions: SymbolVersioning | None = None
        self._debug_symbols: SymbolSection | None = None
        self._dynamic_symbols: SymbolSection | None = None
        self._hash_tables: dict[str, object] = {}
        self._cached_symbols: dict[str, int] | None = None
        self._last_segment: Phdr | None = None

        self._read_program_headers()
        self._read_section_headers()
        self.gnu_version = self.get_section(".gnu.version", SectionType.GNU_versym) \
            if self._named else self.sections[0]

    def __repr__(self) -> str:
        return f"ElfObject({str(self.io)!r})"

    def _read_program_headers(self) -> None:
        headers = self.io.view("program headers", self.header.e_phoff,
                               self.header.e_phnum * Phdr.SIZE)
        for idx in range(self.header.e_phnum):
            phdr = Phdr.read(headers, idx * Phdr.SIZE)
            self._program_headers.setdefault(phdr.p_type, []).append(phdr)
        for phdrs in self._program_headers.values():
            phdrs.sort(key=lambda h: h.p_vaddr)

    def _read_section_headers(self) -> None:
        hdr = self.header
        if hdr.e_shoff >= self.io.size:
            self.sections.append(Section())
            return
        count = 1 if hdr.e_shnum == 0 and hdr.e_shentsize != 0 else hdr.e_shnum
        offset = hdr.e_shoff
        idx = 0
        while idx < count:
            self.sections.append(Section(self, "", Shdr.read(self.io, offset)))
            if idx == 0 and hdr.e_shnum == 0:
                count = self.sections[0].shdr.sh_size
            offset += hdr.e_shentsize
            idx += 1
        if not self.sections:
            self.sections.append(Section())

        if hdr.e_shstrndx == SHN_UNDEF:
            return
        shstr_idx = (self.sections[0].shdr.sh_link if hdr.e_shstrndx == SHN_XINDEX
                     else hdr.e_shstrndx)
        if shstr_idx >= len(self.sections):
            raise ElfError(f"{self.io}: section name table index {shstr_idx} out of range")
        names = self.sections[shstr_idx]
        for secid, section in enumerate(self.sections):
            name = names.io.read_string(section.shdr.sh_name)
            self._named[name] = secid
            section.name = name

        dynamic = self.get_section(".dynamic", SectionType.DYNAMIC)
        if dynamic:
            content = dynamic.io
            for idx in range(content.size // Dyn.SIZE):
                dyn = Dyn.read(content, idx * Dyn.SIZE)
                self.dynamic.setdefault(dyn.d_tag, []).append(dyn)

    # Sections

    def get_section(self, name: str, type: int = SectionType.NULL) -> Section:
        """Find a section by name; if ``type`` is not NULL, it must match too."""
        secid = self._named.get(name)
        if secid is not None:
            section = self.sections[secid]
            if section.shdr.sh_type == type or type == SectionType.NULL:
                return section
        if name.startswith(".debug_"):
            compressed = self.get_section(".z" + name[1:], type)
            if compressed:
                return compressed
        if not name.endswith(".dwo"):
            return self.get_section(name + ".dwo", type)
        return self.sections[0]

    def get_section_by_index(self, idx: int) -> Section:
        """The section at ``idx``, or the null section."""
        if 0 <= idx < len(self.sections) and self.sections[idx]:
            return self.sections[idx]
        return self.sections[0]

    def get_linked_section(self, section: Section) -> Section:
        """The section named by ``section``'s sh_link."""
        if not section:
            return section
        if section.elf is self:
            link = section.shdr.sh_link
            return self.sections[link] if link < len(self.sections) else self.sections[0]
        debug = self.get_debug()
        if debug is not None:
            return debug.get_linked_section(section)
        return self.sections[0]

    def get_debug_section(self, name: str, type: int = SectionType.NULL) -> Section:
        """A section from this image, or from its separate debug image."""
        local = self.get_section(name, type)
        if local and local.shdr.sh_type != SectionType.NOBITS:
            return local
        debug = self.get_debug()
        if debug is not None:
            return debug.get_section(name, type)
        return self.sections[0]

    # Segments

    def get_segments(self, type: int) -> list[Phdr]:
        """Program headers of the given type, ordered by virtual address."""
        return self._program_headers.get(type, [])

    @property
    def program_headers(self) -> dict[int, list[Phdr]]:
        return self._program_headers

    def segment_for_address(self, addr: int) -> Phdr | None:
        """The loadable segment covering ``addr``, if any."""
        last = self._last_segment
        if last is not None and last.p_vaddr <= addr < last.p_vaddr + last.p_memsz:
            return last
        loads = self.get_segments(PT_LOAD)
        pos = bisect.bisect_right(loads, addr, key=lambda h: h.p_vaddr + h.p_memsz)
        if pos < len(loads) and loads[pos].p_vaddr <= addr:
            self._last_segment = loads[pos]
            return self._last_segment
        return None

    def interpreter(self) -> str:
        """The program interpreter named by PT_INTERP, or an empty string."""
        for segment in self.get_segments(PT_INTERP):
            return self.io.read_string(segment.p_offset)
        return ""

    def end_va(self) -> int:
        """The end of the highest loadable segment."""
        loads = self.get_segments(PT_LOAD)
        if not loads:
            raise ElfError(f"{self.io}: no loadable segments")
        last = loads[-1]
        return last.p_vaddr + last.p_memsz

    def notes(self) -> Iterator[NoteDesc]:
        """Every note in the PT_NOTE segments."""
        for phdr in self.get_segments(PT_NOTE):
            io = self.io.view("note section", phdr.p_offset, phdr.p_filesz)
            offset = 0
            while offset + NoteHeader.SIZE <= phdr.p_filesz:
                note = NoteHeader.read(io, offset)
                yield NoteDesc(note, io.view("note content", offset))
                offset = roundup2(offset + NoteHeader.SIZE + note.n_namesz, 4)
                offset = roundup2(offset + note.n_descsz, 4)

    # Symbol versions

    def symbol_version(self, idx: VersionIdx) -> str | None:
        """The version name for a .gnu.version entry, or None if unversioned."""
        i = idx.idx & 0x7FFF
        if i < 2:
            return None
        try:
            return self.symbol_versions().versions[i]
        except KeyError:
            raise ElfError(f"{self.io}: no symbol version {i}") from None

    def version_idx_for_symbol(self, idx: int) -> VersionIdx:
        """The .gnu.version entry for the dynamic symbol at ``idx``."""
        if not self.gnu_version:
            return VersionIdx(_NO_VERSION)
        raw = self.gnu_version.io.read_exact(idx * 2, 2)
        return VersionIdx(int.from_bytes(raw, "little"))

    def _dynamic_count(self, tag: DynTag) -> int | None:
        entries = self.dynamic.get(tag)
        if entries is None:
            raise ElfError(f"{self.io}: missing dynamic entry {tag.name}")
        return entries[0].d_val if entries else None

    def symbol_versions(self) -> SymbolVersioning:
        """Version definitions and requirements from the .gnu.version_* sections."""
        if self._symbol_versions is not None:
            return self._symbol_versions
        result = SymbolVersioning()

        verneed_sec = self.get_section(".gnu.version_r", SectionType.GNU_verneed)
        if verneed_sec:
            strings = self.get_linked_section(verneed_sec).io
            io = verneed_sec.io
            count = self._dynamic_count(DynTag.VERNEEDNUM)
            offset = 0
            for _ in range(count or 0):
                _, vn_cnt, vn_file, vn_aux, vn_next = _VERNEED.unpack(
                    io.read_exact(offset, _VERNEED.size))
                files = result.files.setdefault(strings.read_string(vn_file), [])
                aux_offset = offset + vn_aux
                for _ in range(vn_cnt):
                    _, _, other, name, vna_next = _VERNAUX.unpack(
                        io.read_exact(aux_offset, _VERNAUX.size))
                    result.versions[other] = strings.read_string(name)
                    files.append(other)
                    aux_offset += vna_next
                offset += vn_next

        verdef_sec = self.get_section(".gnu.version_d", SectionType.GNU_verdef)
        if verdef_sec:
            strings = self.get_linked_section(verdef_sec).io
            io = verdef_sec.io
            count = self._dynamic_count(DynTag.VERDEFNUM)
            offset = 0
            for _ in range(count or 0):
                _, _, ndx, vd_cnt, _, vd_aux, vd_next = _VERDEF.unpack(
                    io.read_exact(offset, _VERDEF.size))
                aux_offset = offset + vd_aux
                name = ""
                # The last auxiliary entry holds the version's own name.
                for _ in range(vd_cnt):
                    vda_name, vda_next = _VERDAUX.unpack(
                        io.read_exact(aux_offset, _VERDAUX.size))
                    name = strings.read_string(vda_name)
                    aux_offset += vda_next
                result.versions[ndx] = name
                offset += vd_next

        self._symbol_versions = result
        return result

    # Symbols

    def _symtab(self, name: str, type: SectionType) -> SymbolSection:
        section = self.get_debug_section(name, type)
        return SymbolSection(section.io, self.get_linked_section(section).io)

    def debug_symbols(self) -> SymbolSection:
        """The .symtab table, possibly from the separate debug image."""
        if self._debug_symbols is None:
            self._debug_symbols = self._symtab(".symtab", SectionType.SYMTAB)
        return self._debug_symbols

    def dynamic_symbols(self) -> SymbolSection:
        """The .dynsym table."""
        if self._dynamic_symbols is None:
            self._dynamic_symbols = self._symtab(".dynsym", SectionType.DYNSYM)
        return self._dynamic_symbols

    def _search_symbols(self, table: SymbolSection, addr: int, type: int
                        ) -> tuple[tuple[Sym, str] | None, tuple[Sym, str] | None]:
        exact: tuple[Sym, str] | None = None
        for candidate in table:
            if candidate.st_shndx >= len(self.sections):
                continue
            if type != STT_NOTYPE and candidate.st_type != type:
                continue
            if candidate.st_value > addr:
                continue
            if candidate.st_value + candidate.st_size <= addr:
                if candidate.st_size == 0 and candidate.st_value == addr:
                    exact = (candidate, table.name(candidate))
                continue
            if not self.sections[candidate.st_shndx].shdr.sh_flags & SHF_ALLOC:
                continue
            return (candidate, table.name(candidate)), exact
        return None, exact

    def _gnu_debugdata(self) -> ElfObject | None:
        if self._debug_data is _MISSING:
            data: ElfObject | None = None
            section = self.get_section(".gnu_debugdata", SectionType.PROGBITS)
            if section:
                try:
                    data = ElfObject(LzmaReader(section.io), True, self.debug_dirs)
                except ReaderError as exc:
                    log.warning("can't decode debug data in %s: %s", self.io, exc)
            self._debug_data = data
        return self._debug_data  # type: ignore[return-value]

    def find_symbol_by_address(self, addr: int, type: int = STT_NOTYPE
                               ) -> tuple[Sym, str] | None:
        """The symbol covering ``addr``, with its name, or None."""
        zero_size_match = None
        for table in (self.debug_symbols(), self.dynamic_symbols()):
            found, exact = self._search_symbols(table, addr, type)
            if exact is not None:
                zero_size_match = exact
            if found is not None:
                return found
        debug_data = self._gnu_debugdata()
        if debug_data is not None:
            found = debug_data.find_symbol_by_address(addr, type)
            if found is not None:
                return found
        return zero_size_match

    def _hash_table(self, cls: type, name: str, section_type: SectionType):
        key = cls.__name__
        if key not in self._hash_tables:
            table = None
            section = self.get_section(name, section_type)
            if section:
                syms = self.get_linked_section(section)
                strings = self.get_linked_section(syms)
                if syms and strings:
                    table = cls(section.io, syms.io, strings.io)
            self._hash_tables[key] = table
        return self._hash_tables[key]

    def find_dynamic_symbol(self, name: str) -> tuple[Sym, int]:
        """Look ``name`` up through the hash tables; (undefined, 0) if absent."""
        gnu = self._hash_table(GnuHash, ".gnu.hash", SectionType.GNU_HASH)
        if gnu is not None:
            idx, sym = gnu.find_symbol(name)
        else:
            plain = self._hash_table(SymHash, ".hash", SectionType.HASH)
            idx, sym = plain.find_symbol(name) if plain is not None else (0, undef_symbol())
        if idx == 0:
            return undef_symbol(), 0
        return sym, idx

    def find_debug_symbol(self, name: str) -> tuple[Sym, int]:
        """Look ``name`` up in .symtab; (undefined, 0) if absent."""
        syms = self.debug_symbols()
        if self._cached_symbols is None:
            self._cached_symbols = {syms.name(sym): idx for idx, sym in enumerate(syms)}
        idx = self._cached_symbols.get(name)
        if idx is None:
            return undef_symbol(), 0
        return syms[idx], idx

    # Separate debug information

    def _find_debug_image(self, path: str) -> ElfObject | None:
        for directory in self.debug_dirs:
            candidate = Path(directory) / path.lstrip("/")
            if candidate.is_file():
                try:
                    return _load(candidate, True, self.debug_dirs)
                except (OSError, ReaderError) as exc:
                    log.warning("can't load debug image %s: %s", candidate, exc)
        return None

    def get_debug(self) -> ElfObject | None:
        """The separate debug image, found by build ID or .gnu_debuglink."""
        if self._debug_loaded:
            return self._debug_object
        self._debug_loaded = True

        debug: ElfObject | None = None
        for note in self.notes():
            if note.name() == "GNU" and note.type == GNU_BUILD_ID:
                reader = note.data()
                build_id = reader.read(0, reader.size)
                debug = self._find_debug_image(
                    f".build-id/{build_id[:1].hex()}/{build_id[1:].hex()}.debug")
                break

        if debug is None:
            link_section = self.get_section(".gnu_debuglink", SectionType.PROGBITS)
            if link_section:
                link = link_section.io.read_string(0)
                directory = os.path.dirname(str(self.io)) or "."
                debug = self._find_debug_image(f"{directory}/{link}")

        if debug is None:
            log.debug("no debug object for %s", self.io)
            return None
        log.debug("found debug object %s for %s", debug.io, self.io)
        self._debug_object = debug

        ours = self.get_section(".dynamic")
        theirs = debug.get_section(".dynamic")
        if ours.shdr.sh_addr != theirs.shdr.sh_addr:
            diff = (ours.shdr.sh_addr - theirs.shdr.sh_addr) & _MASK64
            log.warning("dynamic section for debug symbols %s loaded for object %s "
                        "at different offset: diff is %x, assuming %s is prelinked",
                        debug.io, self.io, diff, self.io)
            for section in debug.sections:
                section.shdr.sh_addr = (section.shdr.sh_addr + diff) & _MASK64
            for phdrs in debug.program_headers.values():
                for phdr in phdrs:
                    phdr.p_vaddr = (phdr.p_vaddr + diff) & _MASK64
        return debug


def _load(path: Path, is_debug: bool, debug_dirs: Iterable[str | Path] | None) -> ElfObject:
    return ElfObject(MemReader(str(path), path.read_bytes()), is_debug, debug_dirs)


def open_elf(path: str | Path) -> ElfObject:
    """Open the ELF image stored in the file at ``path``."""
    return _load(Path(path), False, None)