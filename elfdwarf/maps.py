"""Parsing of /proc/<pid>/maps and smaps address-space listings."""
from __future__ import annotations

import string
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path


class Permission(Enum):
    """Access permissions of a mapping."""

    read = auto()
    write = auto()
    exec = auto()
    priv = auto()
    count = auto()
    shared = auto()


class VmFlag(Enum):
    """Kernel VmFlags reported for a mapping in smaps."""

    readable = auto()
    writeable = auto()
    executable = auto()
    shared = auto()
    may_read = auto()
    may_write = auto()
    may_execute = auto()
    may_share = auto()
    stack_grows_down = auto()
    pure_pfn_range = auto()
    disabled_write = auto()
    pages_locked = auto()
    memory_mapped_io = auto()
    sequential_read_advised = auto()
    random_read_advised = auto()
    dont_copy_on_fork = auto()
    dont_expand_on_remap = auto()
    accountable = auto()
    swap_not_reserved = auto()
    huge_tlb_pages = auto()
    synchronous_page_fault = auto()
    architecture_specific = auto()
    wipe_on_fork = auto()
    dont_dump = auto()
    soft_dirty = auto()
    mixed_map = auto()
    huge_page_advised = auto()
    no_huge_page_advised = auto()
    mergeable_advised = auto()
    arm64_BTI_guarded_page = auto()
    arm64_MTE_allocation_tags = auto()
    userfaultfd_missing_tracking = auto()
    userfaultfd_wr_protect_tracking = auto()
    shadow_stack = auto()
    sealed = auto()


_VMFLAG_CODES = {
    "rd": VmFlag.readable,
    "wr": VmFlag.writeable,
    "ex": VmFlag.executable,
    "sh": VmFlag.shared,
    "mr": VmFlag.may_read,
    "mw": VmFlag.may_write,
    "me": VmFlag.may_execute,
    "ms": VmFlag.may_share,
    "gd": VmFlag.stack_grows_down,
    "pf": VmFlag.pure_pfn_range,
    "dw": VmFlag.disabled_write,
    "lo": VmFlag.pages_locked,
    "io": VmFlag.memory_mapped_io,
    "sr": VmFlag.sequential_read_advised,
    "rr": VmFlag.random_read_advised,
    "dc": VmFlag.dont_copy_on_fork,
    "de": VmFlag.dont_expand_on_remap,
    "ac": VmFlag.accountable,
    "nr": VmFlag.swap_not_reserved,
    "ht": VmFlag.huge_tlb_pages,
    "sf": VmFlag.synchronous_page_fault,
    "ar": VmFlag.architecture_specific,
    "wf": VmFlag.wipe_on_fork,
    "dd": VmFlag.dont_dump,
    "sd": VmFlag.soft_dirty,
    "mm": VmFlag.mixed_map,
    "hg": VmFlag.huge_page_advised,
    "nh": VmFlag.no_huge_page_advised,
    "mg": VmFlag.mergeable_advised,
    "bt": VmFlag.arm64_BTI_guarded_page,
    "mt": VmFlag.arm64_MTE_allocation_tags,
    "um": VmFlag.userfaultfd_missing_tracking,
    "uw": VmFlag.userfaultfd_wr_protect_tracking,
    "ss": VmFlag.shadow_stack,
    "sl": VmFlag.sealed,
}

_PERMISSION_CODES = {
    "r": Permission.read,
    "w": Permission.write,
    "x": Permission.exec,
    "p": Permission.priv,
    "s": Permission.shared,
}


@dataclass
class DevNode:
    """The file backing a mapping; equality ignores the path."""

    major: int = -1
    minor: int = -1
    inode: int = 0
    path: str = field(default="", compare=False)


@dataclass
class AddressRange:
    """One mapping in a process address space."""

    start: int = 0
    end: int = 0
    file_end: int = 0
    offset: int = 0
    backing: DevNode = field(default_factory=DevNode)
    permissions: set[Permission] = field(default_factory=set)
    vmflags: set[VmFlag] = field(default_factory=set)


def vmflag(token: str) -> VmFlag | None:
    """Return the VmFlag for a two-letter smaps code, or None if unknown."""
    return _VMFLAG_CODES.get(token)


def _next_token(text: str, sep: str) -> tuple[str, str]:
    text = text.lstrip(" ")
    pos = text.find(sep)
    if pos == -1:
        return text, ""
    return text[:pos], text[pos + 1:]


def _number(token: str, digits: str, base: int) -> int:
    if any(c not in digits for c in token):
        raise ValueError(f"unexpected character in number {token!r}")
    return int(token, base) if token else 0


def _hex(token: str) -> int:
    return _number(token, string.hexdigits, 16)


def _parse_range(line: str) -> AddressRange:
    rng = AddressRange()
    token, rest = _next_token(line, "-")
    rng.start = _hex(token)
    token, rest = _next_token(rest, " ")
    rng.end = _hex(token)
    perms, rest = _next_token(rest, " ")
    for char in perms:
        if char == "-":
            continue
        try:
            rng.permissions.add(_PERMISSION_CODES[char])
        except KeyError:
            raise ValueError(f"unexpected permission {char!r} in {line!r}") from None
    token, rest = _next_token(rest, " ")
    rng.offset = _hex(token)
    token, rest = _next_token(rest, ":")
    major = _hex(token)
    token, rest = _next_token(rest, " ")
    minor = _hex(token)
    token, rest = _next_token(rest, " ")
    inode = _number(token, string.digits, 10)
    path = rest.lstrip(" ") or "<anon>"
    rng.backing = DevNode(major, minor, inode, path)
    return rng


def _apply_attribute(rng: AddressRange, line: str) -> None:
    key, rest = _next_token(line, ":")
    if key != "VmFlags":
        return
    while True:
        token, rest = _next_token(rest, " ")
        if not token:
            return
        flag = vmflag(token)
        if flag is not None:
            rng.vmflags.add(flag)


def parse_address_space(text: str) -> list[AddressRange]:
    """Parse the text of a maps or smaps file."""
    ranges: list[AddressRange] = []
    current: AddressRange | None = None
    for line in text.splitlines():
        if not line:
            continue
        if current is not None and "A" <= line[0] <= "Z":
            _apply_attribute(current, line)
            continue
        current = _parse_range(line)
        ranges.append(current)
    return ranges


def read_address_space(path: str | Path) -> list[AddressRange]:
    """Read and parse a maps or smaps file."""
    with open(path, encoding="utf-8", errors="surrogateescape") as stream:
        return parse_address_space(stream.read())