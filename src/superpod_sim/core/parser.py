"""Shell-like tokenizer and command parser."""

from __future__ import annotations

import re
import shlex
from collections.abc import Collection, Mapping

from superpod_sim.core.types import FlagValue, ParsedCommand

_NUMBER = re.compile(r"^-\d+(\.\d+)?$")


def split_words(line: str) -> list[str]:
    """Split text into words using shell quoting rules.

    Unbalanced quotes fall back to plain whitespace splitting.
    """
    try:
        return shlex.split(line)
    except ValueError:
        return line.split()


def is_flag(token: str) -> bool:
    return token.startswith("-") and token not in ("-", "--") and not _NUMBER.match(token)


def parse(line: str, known_subcommands: Mapping[str, Collection[str]] | None = None) -> ParsedCommand:
    """Parse one command line; never raises.

    With ``known_subcommands``, the second word only becomes the subcommand
    when it is listed for the base command. Without it, any leading
    non-flag word is taken as the subcommand.
    """
    tokens = split_words(line.strip())
    if not tokens:
        return ParsedCommand(base_command="", raw=line)

    base, rest = tokens[0], tokens[1:]
    subcommand: str | None = None
    if rest and not is_flag(rest[0]) and rest[0] != "--":
        allowed = known_subcommands.get(base) if known_subcommands is not None else None
        if known_subcommands is None or base not in known_subcommands or (allowed and rest[0] in allowed):
            subcommand, rest = rest[0], rest[1:]

    flags: dict[str, FlagValue] = {}
    slots: dict[str, int] = {}
    positional: list[str] = []
    options_done = False
    idx = 0
    while idx < len(rest):
        token = rest[idx]
        if options_done or not is_flag(token):
            if token == "--" and not options_done:
                options_done = True
            else:
                positional.append(token)
            idx += 1
            continue

        name = token.lstrip("-")
        if "=" in name:
            key, value = name.split("=", 1)
            flags[key] = value
            slots[key] = len(positional)
            idx += 1
            continue

        if idx + 1 < len(rest) and not is_flag(rest[idx + 1]) and rest[idx + 1] != "--":
            flags[name] = rest[idx + 1]
            slots[name] = len(positional)
            idx += 2
            continue

        flags[name] = True
        idx += 1

    return ParsedCommand(
        base_command=base,
        subcommand=subcommand,
        flags=flags,
        positional_args=tuple(positional),
        raw=line,
        value_slots=slots,
    )
