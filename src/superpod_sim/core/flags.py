"""Per-tool flag schemas with fuzzy suggestions for typos."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace

from rapidfuzz import fuzz, process

from superpod_sim.core.types import FlagValue, ParsedCommand

MIN_SUGGESTION_SCORE = 75


@dataclass(frozen=True)
class FlagSpec:
    """One accepted flag of a tool."""

    name: str
    aliases: tuple[str, ...] = ()
    takes_value: bool = False
    required: bool = False
    choices: tuple[str, ...] = ()
    help: str = ""

    @property
    def names(self) -> tuple[str, ...]:
        return (self.name, *self.aliases)


@dataclass(frozen=True)
class FlagCheck:
    """Outcome of validating a command against a schema."""

    command: ParsedCommand
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def dashed(name: str) -> str:
    return f"-{name}" if len(name) == 1 else f"--{name}"


def suggest(word: str, candidates: Iterable[str], *, score_cutoff: int = MIN_SUGGESTION_SCORE) -> str | None:
    """Return the closest candidate to ``word`` or None when nothing is close."""
    options = [item for item in candidates if item]
    if not word or not options:
        return None
    match = process.extractOne(word, options, scorer=fuzz.WRatio, score_cutoff=score_cutoff)
    if match is None:
        return None
    return str(match[0])


def format_suggestion(suggestion: str | None) -> str:
    return f"Did you mean '{suggestion}'?" if suggestion else ""


class FlagSchema:
    """Accepted flags of one tool, keyed by every spelling."""

    def __init__(self, tool: str, flags: Iterable[FlagSpec], *, lenient: bool = False) -> None:
        self.tool = tool
        self.lenient = lenient
        self._specs: list[FlagSpec] = list(flags)
        self._by_name: dict[str, FlagSpec] = {}
        for spec in self._specs:
            for name in spec.names:
                self._by_name[name] = spec

    @property
    def specs(self) -> list[FlagSpec]:
        return list(self._specs)

    def spellings(self) -> list[str]:
        return [dashed(name) for spec in self._specs for name in spec.names]

    def lookup(self, name: str) -> FlagSpec | None:
        return self._by_name.get(name)

    def suggest_flag(self, name: str) -> str | None:
        return suggest(dashed(name), self.spellings())

    def check(self, cmd: ParsedCommand) -> FlagCheck:
        """Validate flags and normalize them to canonical names.

        Values the parser attached to boolean flags are moved back into the
        positional arguments at the place they were typed.
        """
        flags: dict[str, FlagValue] = {}
        reclaimed: list[tuple[int, str]] = []
        for key, value in cmd.flags.items():
            spec = self._by_name.get(key)
            if spec is None:
                if self.lenient:
                    flags[key] = value
                    continue
                message = f"{self.tool}: unrecognized option '{dashed(key)}'"
                hint = format_suggestion(self.suggest_flag(key))
                if hint:
                    message = f"{message}\n{hint}"
                return FlagCheck(command=cmd, error=f"{message}\nTry '{self.tool} --help' for more information.")

            if spec.takes_value and value is True:
                return FlagCheck(command=cmd, error=f"{self.tool}: option '{dashed(key)}' requires a value")
            if not spec.takes_value and isinstance(value, str):
                reclaimed.append((cmd.value_slots.get(key, len(cmd.positional_args)), value))
                value = True
            if spec.choices and isinstance(value, str) and value not in spec.choices:
                allowed = ", ".join(spec.choices)
                return FlagCheck(
                    command=cmd,
                    error=f"{self.tool}: invalid value '{value}' for {dashed(key)} (choose from {allowed})",
                )
            flags[spec.name] = value

        for spec in self._specs:
            if spec.required and spec.name not in flags:
                return FlagCheck(command=cmd, error=f"Missing required flag: {dashed(spec.name)}")

        positional = cmd.positional_args
        merged: list[str] = []
        for index in range(len(positional) + 1):
            merged.extend(value for slot, value in reclaimed if slot == index)
            if index < len(positional):
                merged.append(positional[index])
        return FlagCheck(command=replace(cmd, flags=flags, positional_args=tuple(merged)))
