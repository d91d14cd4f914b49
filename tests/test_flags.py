import io

import pytest

from elfdwarf.flags import FlagError, Flags


def make_flags(seen):
    return (
        Flags()
        .add("verbose", "v", None, "be verbose", lambda v: seen.append(("verbose", v)))
        .add("exec", "e", "file", "executable to use", lambda v: seen.append(("exec", v)))
        .add("output", Flags.LONGONLY, "path", "where to write", lambda v: seen.append(("output", v)))
        .add("all", "a", None, "show everything", lambda v: seen.append(("all", v)))
    )


def test_short_option_with_separate_argument():
    seen = []
    rest = make_flags(seen).parse(["-e", "prog", "core"])
    assert seen == [("exec", "prog")]
    assert rest == ["core"]


def test_short_option_with_attached_argument():
    seen = []
    make_flags(seen).parse(["-eprog"])
    assert seen == [("exec", "prog")]


def test_clustered_short_options():
    seen = []
    make_flags(seen).parse(["-vae", "x"])
    assert seen == [("verbose", None), ("all", None), ("exec", "x")]


def test_long_options():
    seen = []
    rest = make_flags(seen).parse(["--verbose", "--output=out.txt", "--exec", "bin"])
    assert seen == [("verbose", None), ("output", "out.txt"), ("exec", "bin")]
    assert rest == []


def test_long_option_prefix():
    seen = []
    make_flags(seen).parse(["--verb", "--out", "x"])
    assert seen == [("verbose", None), ("output", "x")]


def test_operands_permuted_and_double_dash():
    seen = []
    rest = make_flags(seen).parse(["a", "-v", "b", "--", "-a", "c"])
    assert seen == [("verbose", None)]
    assert rest == ["a", "b", "-a", "c"]


def test_single_dash_is_operand():
    seen = []
    assert make_flags(seen).parse(["-"]) == ["-"]
    assert seen == []


def test_unknown_option_raises(capsys):
    with pytest.raises(FlagError, match="unknown command line option"):
        make_flags([]).parse(["-z"])
    assert "--verbose" in capsys.readouterr().err


def test_unknown_long_option_raises():
    with pytest.raises(FlagError):
        make_flags([]).parse(["--nonesuch"])


def test_missing_argument_raises():
    with pytest.raises(FlagError):
        make_flags([]).parse(["-e"])
    with pytest.raises(FlagError):
        make_flags([]).parse(["--output"])


def test_argument_to_flag_without_one_raises():
    with pytest.raises(FlagError):
        make_flags([]).parse(["--verbose=yes"])


def test_duplicate_flag_raises():
    flags = Flags().add("one", "x", None, "first", print)
    with pytest.raises(FlagError):
        flags.add("two", "x", None, "second", print)


def test_long_only_flags_do_not_collide():
    seen = []
    flags = (
        Flags()
        .add("first", Flags.LONGONLY, None, "one", lambda v: seen.append("first"))
        .add("second", Flags.LONGONLY, None, "two", lambda v: seen.append("second"))
    )
    flags.parse(["--second", "--first"])
    assert seen == ["second", "first"]


def test_dump_format():
    out = make_flags([]).dump(io.StringIO()).getvalue()
    assert out.splitlines() == [
        "    [-v|--verbose]",
        "        be verbose",
        "    [-e|--exec <file>]",
        "        executable to use",
        "    [--output <path>]",
        "        where to write",
        "    [-a|--all]",
        "        show everything",
    ]