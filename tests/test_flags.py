from superpod_sim.core.flags import FlagSchema, FlagSpec, suggest
from superpod_sim.core.parser import parse


def _schema(*specs: FlagSpec, lenient: bool = False) -> FlagSchema:
    return FlagSchema("tool", specs, lenient=lenient)


def test_aliases_normalize_to_canonical_name() -> None:
    check = _schema(FlagSpec("l", aliases=("list",))).check(parse("tool --list"))
    assert check.ok
    assert check.command.flags == {"l": True}


def test_unknown_flag_gets_a_suggestion() -> None:
    check = _schema(FlagSpec("query", aliases=("q",))).check(parse("tool --quer"))
    assert not check.ok
    assert "unrecognized option '--quer'" in (check.error or "")
    assert "Did you mean '--query'?" in (check.error or "")
    assert "Try 'tool --help'" in (check.error or "")


def test_value_attached_to_boolean_flag_returns_to_positionals() -> None:
    check = _schema(FlagSpec("v")).check(parse("tool -v extra"))
    assert check.ok
    assert check.command.flags == {"v": True}
    assert check.command.positional_args == ("extra",)


def test_reclaimed_values_keep_their_place_among_positionals() -> None:
    schema = _schema(FlagSpec("v"), FlagSpec("x"))
    check = schema.check(parse("tool a -v b c", {"tool": ()}))
    assert check.command.positional_args == ("a", "b", "c")

    check = schema.check(parse("tool -v one -x two three", {"tool": ()}))
    assert check.command.flags == {"v": True, "x": True}
    assert check.command.positional_args == ("one", "two", "three")


def test_missing_value_is_rejected() -> None:
    check = _schema(FlagSpec("i", takes_value=True)).check(parse("tool -i"))
    assert check.error == "tool: option '-i' requires a value"


def test_choices_are_enforced() -> None:
    check = _schema(FlagSpec("d", takes_value=True, choices=("A", "B"))).check(parse("tool -d C"))
    assert check.error is not None
    assert "invalid value 'C' for -d (choose from A, B)" in check.error


def test_required_flag() -> None:
    check = _schema(FlagSpec("r", takes_value=True, required=True)).check(parse("tool"))
    assert check.error == "Missing required flag: -r"


def test_lenient_schema_keeps_unknown_flags() -> None:
    check = _schema(FlagSpec("g", takes_value=True), lenient=True).check(parse("tool -g 0 --whatever 3"))
    assert check.ok
    assert check.command.flags == {"g": "0", "whatever": "3"}


def test_suggest_returns_none_when_nothing_is_close() -> None:
    assert suggest("zzzz", ["--help", "--version"]) is None
    assert suggest("", ["--help"]) is None
