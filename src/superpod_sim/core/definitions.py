"""Command help definitions loaded from the bundled YAML file."""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from importlib import resources

import yaml
from loguru import logger

DEFINITIONS_RESOURCE = "commands.yaml"


@dataclass(frozen=True)
class OptionHelp:
    flag: str
    help: str


@dataclass(frozen=True)
class CommandDefinition:
    """Help metadata of one command."""

    name: str
    description: str
    usage: str
    options: tuple[OptionHelp, ...] = ()
    subcommands: tuple[OptionHelp, ...] = ()
    examples: tuple[str, ...] = field(default_factory=tuple)

    def render_help(self, *, title: str | None = None) -> str:
        lines = [title or f"{self.name} - {self.description}", "", f"Usage: {self.usage}", ""]
        lines.extend(["Description:", f"  {self.description}", ""])
        if self.subcommands:
            lines.append("Commands:")
            width = max(len(item.flag) for item in self.subcommands)
            lines.extend(f"  {item.flag.ljust(width)}  {item.help}" for item in self.subcommands)
            lines.append("")
        lines.append("Options:")
        if self.options:
            width = max(len(item.flag) for item in self.options)
            lines.extend(f"  {item.flag.ljust(width)}  {item.help}" for item in self.options)
        else:
            lines.append("  (none)")
        if self.examples:
            lines.extend(["", "Examples:"])
            lines.extend(f"  {example}" for example in self.examples)
        return "\n".join(lines)


def _load_entry(name: str, payload: dict[str, object]) -> CommandDefinition:
    def options(key: str, label: str) -> tuple[OptionHelp, ...]:
        raw = payload.get(key) or []
        if not isinstance(raw, list):
            return ()
        return tuple(
            OptionHelp(flag=str(item.get(label, "")), help=str(item.get("help", "")))
            for item in raw
            if isinstance(item, dict)
        )

    examples = payload.get("examples") or []
    return CommandDefinition(
        name=name,
        description=str(payload.get("description", "")),
        usage=str(payload.get("usage", name)),
        options=options("options", "flag"),
        subcommands=options("subcommands", "name"),
        examples=tuple(str(item) for item in examples) if isinstance(examples, list) else (),
    )


@lru_cache(maxsize=1)
def load_definitions() -> dict[str, CommandDefinition]:
    text = resources.files("superpod_sim.data").joinpath(DEFINITIONS_RESOURCE).read_text(encoding="utf-8")
    payload = yaml.safe_load(text)
    if not isinstance(payload, dict):
        logger.warning("definitions.invalid resource={}", DEFINITIONS_RESOURCE)
        return {}
    return {str(name): _load_entry(str(name), entry) for name, entry in payload.items() if isinstance(entry, dict)}


def get_definition(name: str) -> CommandDefinition | None:
    return load_definitions().get(name)


def render_help(name: str, *, title: str | None = None) -> str:
    definition = get_definition(name)
    if definition is None:
        return f"No help available for {name}"
    return definition.render_help(title=title)
