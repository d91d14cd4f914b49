import struct

import pytest

from elfdwarf.elfstructs import (
    ELFMAG,
    SHN_UNDEF,
    STT_FUNC,
    Chdr,
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
    elf_hash,
    gnu_hash,
    roundup2,
    undef_symbol,
)
from elfdwarf.reader import MemReader, ReaderError


STRTAB = b"\0foo\0bar\0"
FOO_NAME, BAR_NAME = 1, 5


def _symtab():
    syms = [
        Sym(),
        Sym(st_name=FOO_NAME, st_info=0x12, st_shndx=1, st_value=0x1000, st_size=16),
        Sym(st_name=BAR_NAME, st_info=0x11, st_shndx=2, st_value=0x2000, st_size=8),
    ]
    return MemReader("symtab", b"".join(s.pack() for s in syms)), MemReader("strtab", STRTAB)


@pytest.mark.parametrize("record", [
    Phdr(1, 5, 0x40, 0x400000, 0x400000, 0x100, 0x200, 0x1000),
    Shdr(3, SectionType.SYMTAB, 2, 0x1000, 0x2000, 0x300, 4, 5, 8, 24),
    Sym(7, 0x12, 0, 3, 0xDEAD, 12),
    NoteHeader(4, 20, 3),
    Chdr(1, 0, 4096, 8),
    Dyn(-1, 99),
])
def test_round_trip(record):
    data = record.pack()
    assert len(data) == type(record).SIZE
    assert type(record).from_bytes(data) == record


def test_ehdr_size_and_magic():
    ident = ELFMAG + bytes([2, 1, 1]) + b"\0" * 9
    header = Ehdr(e_ident=ident, e_type=2, e_phnum=3, e_shstrndx=7)
    reader = MemReader("img", b"pad" + header.pack())
    decoded = Ehdr.read(reader, 3)
    assert Ehdr.SIZE == 64
    assert decoded == header
    assert decoded.is_elf
    assert not Ehdr().is_elf


def test_short_data_raises():
    with pytest.raises(ReaderError):
        Sym.from_bytes(b"\0" * 5)
    with pytest.raises(ReaderError):
        Phdr.read(MemReader("small", b"\0" * 10), 0)


def test_sym_type_and_bind():
    sym = Sym(st_info=0x12)
    assert sym.st_type == STT_FUNC
    assert sym.st_bind == 1


def test_undef_symbol_fresh():
    first = undef_symbol()
    assert first.st_shndx == SHN_UNDEF
    assert first == Sym()
    first.st_value = 42
    assert undef_symbol().st_value == 0


def test_version_idx():
    assert VersionIdx(0).is_hidden
    assert not VersionIdx(0xFFFF).is_hidden
    assert VersionIdx(0x8002).is_hidden
    assert VersionIdx(0x8002).is_versioned
    assert not VersionIdx(1).is_versioned
    assert not VersionIdx(2).is_hidden


def test_roundup2_invariants():
    for align in (1, 2, 4, 8):
        for val in range(20):
            result = roundup2(val, align)
            assert result % align == 0
            assert val <= result < val + align
    assert roundup2(8, 4) == 8


def test_roundup2_bad_align():
    with pytest.raises(ValueError):
        roundup2(3, 0)


def test_elf_hash_known_and_invariant():
    assert elf_hash("printf") == 0x077905A6
    assert elf_hash("") == 0
    for name in ("a", "malloc", "a_very_long_symbol_name_for_testing", "\u00e9t\u00e9"):
        assert elf_hash(name) & 0xF0000000 == 0
    assert elf_hash(b"printf") == elf_hash("printf")


def test_gnu_hash_known():
    assert gnu_hash("") == 5381
    assert gnu_hash("printf") == 0x156B2BB8
    assert gnu_hash(b"printf") == gnu_hash("printf")


def test_symbol_section():
    symbols, strings = _symtab()
    section = SymbolSection(symbols, strings)
    assert len(section) == 3
    assert [section.name(s) for s in section] == ["", "foo", "bar"]
    assert section[1].st_value == 0x1000
    assert section[-1].st_value == 0x2000
    with pytest.raises(IndexError):
        section[3]


def _sysv_hash(nbucket, buckets, chains):
    return MemReader("hash", struct.pack(f"<{2 + len(buckets) + len(chains)}I",
                                         nbucket, len(chains), *buckets, *chains))


def test_symhash_lookup():
    symbols, strings = _symtab()
    table = SymHash(_sysv_hash(1, [2], [0, 0, 1]), symbols, strings)
    idx, sym = table.find_symbol("bar")
    assert idx == 2 and sym.st_value == 0x2000
    idx, sym = table.find_symbol("foo")
    assert idx == 1 and sym.st_value == 0x1000
    idx, sym = table.find_symbol("baz")
    assert idx == 0 and sym == undef_symbol()


def test_symhash_no_buckets():
    symbols, strings = _symtab()
    with pytest.raises(ReaderError):
        SymHash(_sysv_hash(0, [], [0]), symbols, strings)


def _gnu_table(bloom, bucket):
    header = struct.pack("<IIII", 1, 1, 1, 6)
    chain = [gnu_hash("foo") & ~1, gnu_hash("bar") | 1]
    body = struct.pack("<Q", bloom) + struct.pack("<I", bucket) + struct.pack("<2I", *chain)
    return MemReader("gnu.hash", header + body)


def test_gnu_hash_lookup():
    symbols, strings = _symtab()
    table = GnuHash(_gnu_table(0xFFFFFFFFFFFFFFFF, 1), symbols, strings)
    idx, sym = table.find_symbol("bar")
    assert idx == 2 and sym.st_value == 0x2000
    idx, sym = table.find_symbol("foo")
    assert idx == 1 and sym.st_value == 0x1000
    idx, sym = table.find_symbol("baz")
    assert idx == 0 and sym.st_shndx == SHN_UNDEF


def test_gnu_hash_bloom_rejects():
    symbols, strings = _symtab()
    table = GnuHash(_gnu_table(0, 1), symbols, strings)
    assert table.find_symbol("foo")[0] == 0


def test_gnu_hash_bucket_below_symoffset():
    symbols, strings = _symtab()
    table = GnuHash(_gnu_table(0xFFFFFFFFFFFFFFFF, 0), symbols, strings)
    assert table.find_symbol("foo") == (0, undef_symbol())


def test_gnu_hash_empty_header():
    symbols, strings = _symtab()
    with pytest.raises(ReaderError):
        GnuHash(MemReader("gnu.hash", struct.pack("<IIII", 0, 1, 1, 6)), symbols, strings)