# elfdwarf

`elfdwarf` reads little-endian 64-bit ELF images and parts of the DWARF debug
data they carry, using nothing but the Python standard library.

## What it covers

- **Byte sources** (`elfdwarf.reader`): the abstract `Reader` with
  `MemReader`, `NullReader`, `InflateReader` (zlib content of a known size)
  and `LzmaReader` (LZMA/XZ content, decoded on first use). Every reader has
  `read`, `read_exact`, `read_string`, `read_uleb128`, `read_sleb128` and
  `view` for a sub-range.
- **DWARF primitives** (`elfdwarf.dwarf_reader`): `DWARFReader` keeps an
  offset into a reader and decodes fixed-size integers, LEB128 values,
  NUL-terminated strings and initial lengths (`getlength` returns the length
  and the offset size, 4 or 8). `read_form_string`, `read_form_unsigned` and
  `read_form` handle the attribute `Form` values used by line tables; string
  forms are resolved through a `StringTables` holding `.debug_str`,
  `.debug_line_str` and an optional `strx` lookup.
- **Line tables** (`elfdwarf.lines`): `parse_line_info` decodes one
  `.debug_line` program (versions 2 to 5) into a `LineInfo` with its
  `directories`, `files` (`FileEntry`) and row `matrix` (`LineState`).
  `LineInfo.source_for_address(addr, verbose)` returns `(file, line)` for the
  row covering an address, with the directory prefixed when `verbose` is true,
  or `None`.
- **Public names** (`elfdwarf.pubnames`): `read_pubname_unit` decodes one
  `.debug_pubnames` unit into a `PubnameUnit` of `Pubname` entries.
- **ELF structures** (`elfdwarf.elfstructs`): the `Ehdr`, `Phdr`, `Shdr`,
  `Sym`, `Dyn`, `NoteHeader` and `Chdr` records (each with `read`,
  `from_bytes` and `pack`), the `SectionType`, `DynTag` and `AuxType` codes,
  `VersionIdx`, `SymbolSection`, the `.hash` and `.gnu.hash` lookups
  `SymHash` and `GnuHash`, and the functions `elf_hash`, `gnu_hash`,
  `roundup2` and `undef_symbol`.
- **ELF objects** (`elfdwarf.elf`): `open_elf(path)` returns an `ElfObject`
  with sections by name (`get_section`) or index, linked sections, segments,
  `segment_for_address`, `interpreter`, `end_va`, `notes`, symbol tables,
  symbol versions, `find_symbol_by_address`, `find_dynamic_symbol`,
  `find_debug_symbol` and `get_debug`. Sections flagged `SHF_COMPRESSED` and
  `.zdebug_*` sections are inflated on access; `.gnu_debugdata` is decoded
  when searching symbols by address. `get_debug` looks for a separate debug
  image by build ID (`.build-id/xx/yyyy.debug`) or `.gnu_debuglink` under the
  object's `debug_dirs` (by default `/usr/lib/debug`), and shifts its
  addresses if the two `.dynamic` sections disagree.
- **Address spaces** (`elfdwarf.maps`): `parse_address_space(text)` and
  `read_address_space(path)` turn `/proc/<pid>/maps` or `smaps` text into
  `AddressRange` records with their `Permission` set, backing `DevNode` and,
  from smaps, their `VmFlag` set. `vmflag(token)` maps a two-letter code to a
  `VmFlag` or `None`.
- **Command-line flags** (`elfdwarf.flags`): `Flags` is an option table.
  `add(name, flag, metavar, help, callback)` registers an option with a short
  letter or `Flags.LONGONLY`; `parse(argv)` runs each option's callback with
  its argument and returns the remaining operands; `dump(stream)` writes a
  usage summary.

## Examples

Find the symbol that covers an address:

```python
from elfdwarf.elf import open_elf

obj = open_elf("/usr/bin/true")
print(obj.interpreter())
found = obj.find_symbol_by_address(0x1040, 0)
if found:
    sym, name = found
    print(name, hex(sym.st_value))
```

Look a name up through the dynamic hash tables:

```python
sym, index = obj.find_dynamic_symbol("malloc")
```

Decode DWARF primitives from raw bytes:

```python
from elfdwarf.reader import MemReader
from elfdwarf.dwarf_reader import DWARFReader

io = MemReader("example", b"\xe5\x8e\x26\x7f")
r = DWARFReader(io, 0, None)
print(r.getuleb128())   # 624485
print(r.gets8())        # 127
```

Parse a memory map:

```python
from elfdwarf.maps import parse_address_space

text = "00400000-00452000 r-xp 00000000 08:02 173521 /usr/bin/dbus-daemon\n"
for rng in parse_address_space(text):
    print(hex(rng.start), hex(rng.end), sorted(p.name for p in rng.permissions))
```

## Errors

`ReaderError` is raised for short reads and undecodable compressed data.
`DWARFError` (a `ReaderError`) is raised for unsupported forms, opcodes and
integer sizes. `ElfError` (a `ReaderError`) is raised for content that is not
an ELF image, for ELF images other than little-endian 64-bit, and for missing
tables the request depends on. `FlagError` is raised for bad option
definitions and for unknown or incomplete options on a command line, after the
usage summary is written to standard error. The map parser raises
`ValueError` for malformed lines.

## What it does not do

The package is a library only: it installs no command. It does not attach to
or stop running processes, read core-file thread state, unwind stacks,
evaluate DWARF expressions, or decode the DWARF `.debug_info` tree of
debugging entries; line tables and public-name units are decoded from readers
you position yourself.