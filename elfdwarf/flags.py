"""Command-line option table with short and long options."""
from __future__ import annotations

import sys
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from typing import TextIO

Callback = Callable[[str | None], object]


class FlagError(Exception):
    """Raised for a bad option definition or command line."""


@dataclass
class _Option:
    name: str
    key: str | int
    metavar: str | None
    help: str
    callback: Callback

    @property
    def takes_arg(self) -> bool:
        return self.metavar is not None


class Flags:
    """A set of options, each with a help text and a callback for its value."""

    LONGONLY = None

    def __init__(self) -> None:
        self._options: list[_Option] = []
        self._by_key: dict[str | int, _Option] = {}
        self._short: dict[str, _Option] = {}
        self._long_key = 0

    def add(self, name: str, flag: str | None, metavar: str | None,
            help: str, callback: Callback) -> Flags:
        """Add an option; ``flag`` is its short letter or LONGONLY."""
        if flag is self.LONGONLY:
            self._long_key -= 1
            key: str | int = self._long_key
        elif isinstance(flag, str) and len(flag) == 1 and flag not in "-:?":
            key = flag
        else:
            raise FlagError(f"invalid short option {flag!r} for --{name}")
        if key in self._by_key:
            raise FlagError(f"option {flag!r} defined twice")
        option = _Option(name, key, metavar, help, callback)
        self._options.append(option)
        self._by_key[key] = option
        return self

    def done(self) -> Flags:
        """Finish the table so it can be parsed."""
        self._short = {o.key: o for o in self._options if isinstance(o.key, str)}
        return self

    def dump(self, stream: TextIO) -> TextIO:
        """Write a usage summary of every option."""
        for option in self._options:
            line = "    ["
            if isinstance(option.key, str):
                line += f"-{option.key}|"
            line += f"--{option.name}"
            if option.takes_arg:
                line += f" <{option.metavar}>"
            stream.write(f"{line}]\n        {option.help}\n")
        return stream

    def parse(self, argv: Sequence[str] | None = None) -> list[str]:
        """Run callbacks for the options in ``argv``; return the operands."""
        self.done()
        args = iter(sys.argv[1:] if argv is None else argv)
        operands: list[str] = []
        for arg in args:
            if arg == "--":
                operands.extend(args)
            elif arg.startswith("--"):
                self._parse_long(arg[2:], args)
            elif arg.startswith("-") and arg != "-":
                self._parse_short(arg[1:], args)
            else:
                operands.append(arg)
        return operands

    def _fail(self, token: str) -> None:
        self.dump(sys.stderr)
        raise FlagError(f"unknown command line option {token}")

    def _lookup_long(self, name: str) -> _Option | None:
        for option in self._options:
            if option.name == name:
                return option
        candidates = [o for o in self._options if o.name.startswith(name)]
        return candidates[0] if len(candidates) == 1 else None

    def _parse_long(self, body: str, rest: Iterator[str]) -> None:
        name, eq, value = body.partition("=")
        option = self._lookup_long(name) if name else None
        if option is None:
            self._fail(f"--{body}")
            return
        argument: str | None
        if option.takes_arg:
            argument = value if eq else next(rest, None)
            if argument is None:
                self._fail(f"--{name}")
        elif eq:
            self._fail(f"--{body}")
        else:
            argument = None
        option.callback(argument)

    def _parse_short(self, cluster: str, rest: Iterator[str]) -> None:
        for pos, letter in enumerate(cluster):
            option = self._short.get(letter)
            if option is None:
                self._fail(f"-{letter}")
                return
            if option.takes_arg:
                argument = cluster[pos + 1:] or next(rest, None)
                if argument is None:
                    self._fail(f"-{letter}")
                option.callback(argument)
                return
            option.callback(None)