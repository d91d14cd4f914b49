"""ELF on-disk structures, type codes, symbol tables and symbol hash tables."""
from __future__ import annotations

import struct
from collections.abc import Iterator
from dataclasses import dataclass, fields
from enum import IntEnum
from typing import ClassVar

from elfdwarf.reader import Reader, ReaderError

ELF_BITS = 64
ELF_BYTES = ELF_BITS // 8

ELFMAG = b"\x7fELF"
EI_VERSION = 6
EV_CURRENT = 1

SHN_UNDEF = 0
SHN_XINDEX = 0xFFFF
STN_UNDEF = 0

SHF_ALLOC = 1 << 1
SHF_COMPRESSED = 1 << 11

PT_NULL = 0
PT_LOAD = 1
PT_DYNAMIC = 2
PT_INTERP = 3
PT_NOTE = 4

STT_NOTYPE = 0
STT_OBJECT = 1
STT_FUNC = 2

GNU_BUILD_ID = 3
NT_FILE = 0x46494C45

_MASK32 = 0xFFFFFFFF
_VERSION_NONE = 0xFFFF


class SectionType(IntEnum):
    """Section header types (sh_type)."""

    NULL = 0
    PROGBITS = 1
    SYMTAB = 2
    STRTAB = 3
    RELA = 4
    HASH = 5
    DYNAMIC = 6
    NOTE = 7
    NOBITS = 8
    REL = 9
    SHLIB = 10
    DYNSYM = 11
    INIT_ARRAY = 14
    FINI_ARRAY = 15
    PREINIT_ARRAY = 16
    GROUP = 17
    SYMTAB_SHNDX = 18
    NUM = 19
    LOOS = 0x60000000
    GNU_ATTRIBUTES = 0x6FFFFFF5
    GNU_HASH = 0x6FFFFFF6
    GNU_LIBLIST = 0x6FFFFFF7
    CHECKSUM = 0x6FFFFFF8
    SUNW_move = 0x6FFFFFFA
    SUNW_COMDAT = 0x6FFFFFFB
    SUNW_syminfo = 0x6FFFFFFC
    GNU_verdef = 0x6FFFFFFD
    GNU_verneed = 0x6FFFFFFE
    GNU_versym = 0x6FFFFFFF
    LOPROC = 0x70000000
    HIPROC = 0x7FFFFFFF
    LOUSER = 0x80000000
    HIUSER = 0x8FFFFFFF


class DynTag(IntEnum):
    """Dynamic section entry tags (d_tag)."""

    NULL = 0
    NEEDED = 1
    PLTRELSZ = 2
    PLTGOT = 3
    HASH = 4
    STRTAB = 5
    SYMTAB = 6
    RELA = 7
    RELASZ = 8
    RELAENT = 9
    STRSZ = 10
    SYMENT = 11
    INIT = 12
    FINI = 13
    SONAME = 14
    RPATH = 15
    SYMBOLIC = 16
    REL = 17
    RELSZ = 18
    RELENT = 19
    PLTREL = 20
    DEBUG = 21
    TEXTREL = 22
    JMPREL = 23
    BIND_NOW = 24
    INIT_ARRAY = 25
    FINI_ARRAY = 26
    INIT_ARRAYSZ = 27
    FINI_ARRAYSZ = 28
    RUNPATH = 29
    FLAGS = 30
    ENCODING = 32
    PREINIT_ARRAYSZ = 33
    LOOS = 0x6000000D
    HIOS = 0x6FFFF000
    VALRNGLO = 0x6FFFFD00
    VALRNGHI = 0x6FFFFDFF
    ADDRRNGLO = 0x6FFFFE00
    ADDRRNGHI = 0x6FFFFEFF
    VERSYM = 0x6FFFFFF0
    RELACOUNT = 0x6FFFFFF9
    RELCOUNT = 0x6FFFFFFA
    FLAGS_1 = 0x6FFFFFFB
    VERDEF = 0x6FFFFFFC
    VERDEFNUM = 0x6FFFFFFD
    VERNEED = 0x6FFFFFFE
    VERNEEDNUM = 0x6FFFFFFF
    LOPROC = 0x70000000
    HIPROC = 0x7FFFFFFF


class AuxType(IntEnum):
    """Auxiliary vector entry types."""

    NULL = 0
    IGNORE = 1
    EXECFD = 2
    PHDR = 3
    PHENT = 4
    PHNUM = 5
    PAGESZ = 6
    BASE = 7
    FLAGS = 8
    ENTRY = 9
    NOTELF = 10
    UID = 11
    EUID = 12
    GID = 13
    EGID = 14
    PLATFORM = 15
    HWCAP = 16
    CLKTCK = 17
    FPUCW = 18
    DCACHEBSIZE = 19
    ICACHEBSIZE = 20
    UCACHEBSIZE = 21
    IGNOREPPC = 22
    SECURE = 23
    BASE_PLATFORM = 24
    RANDOM = 25
    HWCAP2 = 26
    EXECFN = 31
    SYSINFO = 32
    SYSINFO_EHDR = 33
    L1I_CACHESHAPE = 34
    L1D_CACHESHAPE = 35
    L2_CACHESHAPE = 36
    L3_CACHESHAPE = 37


class _Struct:
    """Fixed-layout little-endian record; subclasses are dataclasses."""

    _LAYOUT: ClassVar[struct.Struct]
    SIZE: ClassVar[int]

    def __init_subclass__(cls, **kwargs: object) -> None:
        super().__init_subclass__(**kwargs)
        cls.SIZE = cls._LAYOUT.size

    @classmethod
    def from_bytes(cls, data: bytes):
        """Decode a record from the start of ``data``."""
        if len(data) < cls.SIZE:
            raise ReaderError(
                f"{cls.__name__} needs {cls.SIZE} bytes, got {len(data)}"
            )
        return cls(*cls._LAYOUT.unpack_from(data))

    @classmethod
    def read(cls, reader: Reader, offset: int):
        """Decode a record at ``offset`` in ``reader``."""
        return cls.from_bytes(reader.read_exact(offset, cls.SIZE))

    def pack(self) -> bytes:
        """Encode the record in its on-disk form."""
        return self._LAYOUT.pack(*(getattr(self, f.name) for f in fields(self)))


@dataclass
class Ehdr(_Struct):
    """ELF file header."""

    _LAYOUT: ClassVar[struct.Struct] = struct.Struct("<16sHHIQQQIHHHHHH")

    e_ident: bytes = b"\0" * 16
    e_type: int = 0
    e_machine: int = 0
    e_version: int = 0
    e_entry: int = 0
    e_phoff: int = 0
    e_shoff: int = 0
    e_flags: int = 0
    e_ehsize: int = 0
    e_phentsize: int = 0
    e_phnum: int = 0
    e_shentsize: int = 0
    e_shnum: int = 0
    e_shstrndx: int = 0

    @property
    def is_elf(self) -> bool:
        """True if the identification bytes carry the ELF magic and version."""
        return (self.e_ident[:4] == ELFMAG
                and len(self.e_ident) > EI_VERSION
                and self.e_ident[EI_VERSION] == EV_CURRENT)


@dataclass
class Phdr(_Struct):
    """Program (segment) header."""

    _LAYOUT: ClassVar[struct.Struct] = struct.Struct("<IIQQQQQQ")

    p_type: int = 0
    p_flags: int = 0
    p_offset: int = 0
    p_vaddr: int = 0
    p_paddr: int = 0
    p_filesz: int = 0
    p_memsz: int = 0
    p_align: int = 0


@dataclass
class Shdr(_Struct):
    """Section header."""

    _LAYOUT: ClassVar[struct.Struct] = struct.Struct("<IIQQQQIIQQ")

    sh_name: int = 0
    sh_type: int = 0
    sh_flags: int = 0
    sh_addr: int = 0
    sh_offset: int = 0
    sh_size: int = 0
    sh_link: int = 0
    sh_info: int = 0
    sh_addralign: int = 0
    sh_entsize: int = 0


@dataclass
class Sym(_Struct):
    """Symbol table entry."""

    _LAYOUT: ClassVar[struct.Struct] = struct.Struct("<IBBHQQ")

    st_name: int = 0
    st_info: int = 0
    st_other: int = 0
    st_shndx: int = SHN_UNDEF
    st_value: int = 0
    st_size: int = 0

    @property
    def st_type(self) -> int:
        """Symbol type (STT_*) from st_info."""
        return self.st_info & 0xF

    @property
    def st_bind(self) -> int:
        """Symbol binding (STB_*) from st_info."""
        return self.st_info >> 4


@dataclass
class Dyn(_Struct):
    """Dynamic section entry."""

    _LAYOUT: ClassVar[struct.Struct] = struct.Struct("<qQ")

    d_tag: int = 0
    d_val: int = 0


@dataclass
class NoteHeader(_Struct):
    """Header of a note: name size, descriptor size and type."""

    _LAYOUT: ClassVar[struct.Struct] = struct.Struct("<III")

    n_namesz: int = 0
    n_descsz: int = 0
    n_type: int = 0


@dataclass
class Chdr(_Struct):
    """Header of a compressed (SHF_COMPRESSED) section."""

    _LAYOUT: ClassVar[struct.Struct] = struct.Struct("<IIQQ")

    ch_type: int = 0
    ch_reserved: int = 0
    ch_size: int = 0
    ch_addralign: int = 0


@dataclass(frozen=True)
class VersionIdx:
    """An entry of the .gnu.version table."""

    idx: int

    @property
    def is_hidden(self) -> bool:
        return self.idx != _VERSION_NONE and (bool(self.idx & 0x8000) or self.idx == 0)

    @property
    def is_versioned(self) -> bool:
        return (self.idx & 0x7FFF) > 1


def undef_symbol() -> Sym:
    """Return a fresh, all-zero undefined symbol."""
    return Sym(st_shndx=SHN_UNDEF)


def roundup2(val: int, align: int) -> int:
    """Round ``val`` up to a multiple of ``align``."""
    if align <= 0:
        raise ValueError(f"alignment must be positive, not {align}")
    return val + (align - val % align) % align


def _as_bytes(text: str | bytes) -> bytes:
    return text.encode("utf-8", "surrogateescape") if isinstance(text, str) else bytes(text)


def elf_hash(text: str | bytes) -> int:
    """The System V ABI symbol hash used by .hash sections."""
    h = 0
    for byte in _as_bytes(text):
        char = byte - 256 if byte >= 0x80 else byte
        h = ((h << 4) + char) & _MASK32
        g = h & 0xF0000000
        if g:
            h ^= g >> 24
        h &= ~g & _MASK32
    return h


def gnu_hash(name: str | bytes) -> int:
    """The hash function used by .gnu.hash sections."""
    h = 5381
    for byte in _as_bytes(name):
        h = (h * 33 + byte) & _MASK32
    return h


class SymbolSection:
    """A symbol table together with the string table naming its symbols."""

    def __init__(self, symbols: Reader, strings: Reader) -> None:
        self.symbols = symbols
        self.strings = strings

    def __len__(self) -> int:
        return self.symbols.size // Sym.SIZE

    def __getitem__(self, idx: int) -> Sym:
        count = len(self)
        if idx < 0:
            idx += count
        if not 0 <= idx < count:
            raise IndexError(f"symbol index {idx} out of range")
        return Sym.read(self.symbols, idx * Sym.SIZE)

    def __iter__(self) -> Iterator[Sym]:
        for idx in range(len(self)):
            yield Sym.read(self.symbols, idx * Sym.SIZE)

    def name(self, sym: Sym) -> str:
        """Return the name of ``sym``."""
        return self.strings.read_string(sym.st_name)


class SymHash:
    """Symbol lookup through a .hash section."""

    def __init__(self, hash_io: Reader, syms: Reader, strings: Reader) -> None:
        self.syms = syms
        self.strings = strings
        raw = hash_io.read(0, hash_io.size)
        count = len(raw) // 4
        if count < 2:
            raise ReaderError(f"{hash_io}: hash table too small")
        words = struct.unpack_from(f"<{count}I", raw)
        self.nbucket, self.nchain = words[0], words[1]
        if self.nbucket == 0:
            raise ReaderError(f"{hash_io}: hash table has no buckets")
        self.buckets = words[2:2 + self.nbucket]
        self.chains = words[2 + self.nbucket:]
        if len(self.buckets) != self.nbucket:
            raise ReaderError(f"{hash_io}: hash table truncated")

    def find_symbol(self, name: str) -> tuple[int, Sym]:
        """Return (index, symbol) for ``name``, or (0, undefined symbol)."""
        idx = self.buckets[elf_hash(name) % self.nbucket]
        for _ in range(len(self.chains) + 1):
            if idx == STN_UNDEF:
                break
            candidate = Sym.read(self.syms, idx * Sym.SIZE)
            if self.strings.read_string(candidate.st_name) == name:
                return idx, candidate
            if idx >= len(self.chains):
                raise ReaderError(f"hash chain index {idx} out of range")
            idx = self.chains[idx]
        return 0, undef_symbol()


class GnuHash:
    """Symbol lookup through a .gnu.hash section, with its bloom filter."""

    _HEADER = struct.Struct("<IIII")

    def __init__(self, hash_io: Reader, syms: Reader, strings: Reader) -> None:
        self.hash = hash_io
        self.syms = syms
        self.strings = strings
        (self.nbuckets, self.symoffset,
         self.bloom_size, self.bloom_shift) = self._HEADER.unpack(
            hash_io.read_exact(0, self._HEADER.size))
        if self.nbuckets == 0 or self.bloom_size == 0:
            raise ReaderError(f"{hash_io}: empty GNU hash table")

    def _bloomoff(self, idx: int) -> int:
        return self._HEADER.size + idx * ELF_BYTES

    def _bucketoff(self, idx: int) -> int:
        return self._bloomoff(self.bloom_size) + idx * 4

    def _chainoff(self, idx: int) -> int:
        return self._bucketoff(self.nbuckets) + idx * 4

    def _word(self, offset: int, size: int) -> int:
        return int.from_bytes(self.hash.read_exact(offset, size), "little")

    def find_symbol(self, name: str) -> tuple[int, Sym]:
        """Return (index, symbol) for ``name``, or (0, undefined symbol)."""
        symhash = gnu_hash(name)
        bloomword = self._word(
            self._bloomoff((symhash // ELF_BITS) % self.bloom_size), ELF_BYTES)
        mask = (1 << (symhash % ELF_BITS)) | (1 << ((symhash >> self.bloom_shift) % ELF_BITS))
        if bloomword & mask != mask:
            return 0, undef_symbol()

        idx = self._word(self._bucketoff(symhash % self.nbuckets), 4)
        if idx < self.symoffset:
            return 0, undef_symbol()
        while True:
            sym = Sym.read(self.syms, idx * Sym.SIZE)
            chainhash = self._word(self._chainoff(idx - self.symoffset), 4)
            if (chainhash | 1) == (symhash | 1) and self.strings.read_string(sym.st_name) == name:
                return idx, sym
            if chainhash & 1:
                return 0, undef_symbol()
            idx += 1