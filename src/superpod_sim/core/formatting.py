"""Text rendering helpers shared by the simulators."""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

RESET = "\x1b[0m"
BOLD = "\x1b[1m"
RED = "\x1b[31m"
GREEN = "\x1b[32m"
YELLOW = "\x1b[33m"
CYAN = "\x1b[36m"

DOT_LEADER_WIDTH = 70

_ANSI = re.compile(r"\x1b\[[0-9;]*m")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_ACRONYMS = frozenset({"ip", "mac", "gpu", "gpus", "id", "uuid", "pci", "cpu", "bmc", "ib"})

_STATUS_COLORS: dict[str, str] = {
    "healthy": GREEN,
    "ok": GREEN,
    "pass": GREEN,
    "warning": YELLOW,
    "warn": YELLOW,
    "critical": RED,
    "fail": RED,
    "error": RED,
}


def strip_ansi(text: str) -> str:
    return _ANSI.sub("", text)


def visible_len(text: str) -> int:
    return len(strip_ansi(text))


def colorize(text: str, color: str) -> str:
    return f"{color}{text}{RESET}"


def color_status(status: str) -> str:
    """Wrap a status word in its conventional color."""
    color = _STATUS_COLORS.get(status.lower())
    return colorize(status, color) if color else status


def ljust_visible(text: str, width: int) -> str:
    return text + " " * max(0, width - visible_len(text))


def dot_leader(description: str, status: str, width: int = DOT_LEADER_WIDTH) -> str:
    """Render ``description .... status`` to ``width`` visible characters.

    Always emits at least one dot; lines only exceed ``width`` when the
    description itself leaves no room.
    """
    dots = max(1, width - visible_len(description) - visible_len(status) - 2)
    return f"{description} {'.' * dots} {status}"


def pipe_table(
    headers: Sequence[str],
    rows: Iterable[Sequence[Any]],
    *,
    widths: Sequence[int] | None = None,
) -> str:
    """Render a header row plus data rows separated by `` | ``.

    Column widths grow to fit content unless ``widths`` pins them.
    """
    body = [[str(cell) for cell in row] for row in rows]
    if widths is None:
        computed = [visible_len(header) for header in headers]
        for row in body:
            for idx, cell in enumerate(row[: len(computed)]):
                computed[idx] = max(computed[idx], visible_len(cell))
        widths = computed

    def render(cells: Sequence[str]) -> str:
        padded = [ljust_visible(cell, widths[idx]) if idx < len(cells) - 1 else cell for idx, cell in enumerate(cells)]
        return " | ".join(padded).rstrip()

    return "\n".join([render(list(headers)), *(render(row) for row in body)])


def aligned_columns(rows: Iterable[Sequence[Any]], *, gap: int = 2) -> str:
    """Whitespace-aligned columns, as printed by Slurm and ipmitool."""
    body = [[str(cell) for cell in row] for row in rows]
    if not body:
        return ""
    count = max(len(row) for row in body)
    widths = [0] * count
    for row in body:
        for idx, cell in enumerate(row):
            widths[idx] = max(widths[idx], visible_len(cell))
    lines = []
    for row in body:
        cells = [ljust_visible(cell, widths[idx] + gap) for idx, cell in enumerate(row[:-1])]
        lines.append(("".join(cells) + row[-1]).rstrip())
    return "\n".join(lines)


def key_value_block(pairs: Iterable[tuple[str, Any]], *, indent: int = 0, separator: str = ":") -> str:
    items = [(str(key), str(value)) for key, value in pairs]
    if not items:
        return ""
    width = max(len(key) for key, _ in items)
    pad = " " * indent
    return "\n".join(f"{pad}{key.ljust(width)} {separator} {value}" for key, value in items)


def section(title: str, *, underline: str = "-") -> str:
    return f"{title}\n{underline * len(title)}"


def display_key(name: str) -> str:
    """Turn an internal field name into a user-facing capitalized key.

    ``ip_address`` and ``ipAddress`` both become ``IPAddress``.
    """
    parts: list[str] = []
    for chunk in name.split("_"):
        parts.extend(piece for piece in _CAMEL_BOUNDARY.split(chunk) if piece)
    return "".join(part.upper() if part.lower() in _ACRONYMS else part[:1].upper() + part[1:] for part in parts)


def capitalize_keys(record: Mapping[str, Any], overrides: Mapping[str, str] | None = None) -> dict[str, Any]:
    overrides = overrides or {}
    return {overrides.get(key, display_key(key)): value for key, value in record.items()}


def json_records(records: Iterable[Mapping[str, Any]], overrides: Mapping[str, str] | None = None) -> str:
    return json.dumps([capitalize_keys(record, overrides) for record in records], indent=2)
