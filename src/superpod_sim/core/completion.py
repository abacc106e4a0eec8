"""Tab completion for the simulated terminal."""

from __future__ import annotations

import posixpath
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Literal

from superpod_sim.cluster.services import SERVICES
from superpod_sim.core.filesystem import SIMULATED_PATHS, resolve

CompletionType = Literal["command", "subcommand", "flag", "path", "value", "none"]

AVAILABLE_COMMANDS: tuple[str, ...] = (
    # Simulated tools
    "nvidia-smi",
    "nvidia-bug-report.sh",
    "dcgmi",
    "ipmitool",
    "sinfo",
    "squeue",
    "scontrol",
    "sbatch",
    "srun",
    "scancel",
    "sacct",
    "sacctmgr",
    "cmsh",
    "nvsm",
    "lspci",
    "journalctl",
    "ibstat",
    "ibportstate",
    "ibporterrors",
    "iblinkinfo",
    "ibdev2netdev",
    "perfquery",
    # Shell builtins
    "help",
    "hostname",
    "ssh",
    "history",
    "pwd",
    "echo",
    "clear",
    # Node shell
    "cd",
    "ls",
    "cat",
    "systemctl",
    "dmesg",
    "nv-fabricmanager",
)

COMMAND_SUBCOMMANDS: dict[str, tuple[str, ...]] = {
    "nvidia-smi": ("topo", "nvlink"),
    "dcgmi": ("discovery", "group", "health", "diag", "stats", "dmon"),
    "ipmitool": ("sdr", "sensor", "chassis", "power", "mc", "sel", "lan", "fru"),
    "scontrol": ("show", "update", "ping", "version"),
    "sacctmgr": ("show", "list", "add", "create", "modify", "delete", "remove"),
    "cmsh": ("device", "category", "softwareimage", "partition"),
    "nvsm": ("show", "dump", "cd"),
    "systemctl": ("status", "start", "stop", "restart", "enable", "disable", "is-active", "is-enabled", "list-units"),
    "nv-fabricmanager": ("status", "query", "start", "stop", "restart", "config", "diag", "topo"),
}

COMMON_FLAGS: dict[str, tuple[str, ...]] = {
    "nvidia-smi": ("-L", "-q", "-d", "-i", "--query-gpu", "--format", "--help", "--version"),
    "dcgmi": ("-l", "-g", "-c", "-s", "-r", "-e", "-j", "--help", "--version"),
    "ipmitool": ("-I", "-H", "-U", "-P", "--help"),
    "sinfo": ("-N", "-l", "-p", "-t", "-n", "-o", "-R", "-s", "-h", "--help"),
    "squeue": ("-u", "-p", "-t", "-j", "-w", "-l", "--me", "--help"),
    "sbatch": ("-N", "-p", "-J", "--gres", "--gpus", "--gpus-per-node", "--wrap", "--help"),
    "srun": ("-N", "-p", "-J", "--gres", "--gpus", "--pty", "--help"),
    "scancel": ("-u", "--help"),
    "sacct": ("-j", "-u", "-a", "--help"),
    "sacctmgr": ("-p", "-n", "-i", "--help"),
    "cmsh": ("-c", "--help", "--version"),
    "nvsm": ("--detailed", "--help", "--version"),
    "lspci": ("-v", "-vv", "-d", "-s", "-k", "-n", "-nn", "--help", "--version"),
    "journalctl": ("-b", "-k", "-u", "-p", "-n", "-r", "-g", "--no-pager", "--help"),
    "nvidia-bug-report.sh": ("-o", "-v", "--no-compress", "--extra-system-data", "--safe-mode", "--help"),
    "ibstat": ("-l", "-s", "-p", "--help", "--version"),
    "ibdev2netdev": ("-v",),
    "iblinkinfo": ("-v", "-l", "--help"),
    "perfquery": ("-x", "-r", "--help"),
    "systemctl": ("--no-pager", "--help", "--version"),
    "dmesg": ("-T", "-l", "--level", "--help", "--version"),
    "ls": ("-a", "-l", "-la", "--help"),
    "nv-fabricmanager": ("--help", "--version"),
}

# Commands whose arguments are file paths.
_PATH_COMMANDS = frozenset({"cat", "cd", "ls", "sbatch"})


@dataclass(frozen=True)
class CompletionContext:
    line: str
    current_word: str
    word_index: int
    previous_words: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class CompletionResult:
    completions: list[str]
    type: CompletionType
    is_partial: bool = False
    common_prefix: str = ""


def _result(completions: list[str], kind: CompletionType) -> CompletionResult:
    if not completions:
        return CompletionResult(completions=[], type=kind)
    return CompletionResult(
        completions=completions,
        type=kind,
        is_partial=len(completions) > 1,
        common_prefix=find_common_prefix(completions),
    )


def parse_completion_context(line: str) -> CompletionContext:
    """Split the text before the cursor into finished words and the word being typed."""
    words = line.split()
    if not line or line[-1].isspace():
        return CompletionContext(line=line, current_word="", word_index=len(words), previous_words=words)
    return CompletionContext(line=line, current_word=words[-1], word_index=len(words) - 1, previous_words=words[:-1])


def find_common_prefix(items: Sequence[str]) -> str:
    if not items:
        return ""
    return posixpath.commonprefix(list(items))


def filter_completions(candidates: Iterable[str], prefix: str) -> list[str]:
    """Case-insensitive prefix match, sorted and de-duplicated."""
    lowered = prefix.lower()
    return sorted({item for item in candidates if item.lower().startswith(lowered)})


def complete_command(partial: str, extra: Iterable[str] = ()) -> CompletionResult:
    return _result(filter_completions([*AVAILABLE_COMMANDS, *extra], partial), "command")


def complete_flag(command: str, partial: str) -> CompletionResult:
    return _result(filter_completions(COMMON_FLAGS.get(command, ("--help",)), partial), "flag")


def complete_subcommand(command: str, partial: str) -> CompletionResult:
    if partial.startswith("-"):
        return complete_flag(command, partial)
    return _result(filter_completions(COMMAND_SUBCOMMANDS.get(command, ()), partial), "subcommand")


def complete_path(partial: str, cwd: str = "/root") -> CompletionResult:
    """Complete against the simulated file tree; relative input resolves from ``cwd``."""
    if partial.endswith("/"):
        directory, stem = partial, ""
    else:
        directory, stem = posixpath.split(partial)
    resolved = resolve(directory, cwd) if directory else cwd
    entries = SIMULATED_PATHS.get(resolved)
    if entries is None:
        return _result([], "path")
    prefix = directory if not directory or directory.endswith("/") else f"{directory}/"
    matches = [f"{prefix}{name}" for name in entries if name.lower().startswith(stem.lower())]
    return _result(sorted(matches), "path")


def complete_systemctl_service(partial: str) -> CompletionResult:
    return _result(filter_completions((service.name for service in SERVICES), partial), "value")


def get_completions(
    line: str,
    *,
    cwd: str = "/root",
    nodes: Sequence[str] = (),
    extra_commands: Iterable[str] = (),
) -> CompletionResult:
    """Completions for the word under the cursor at the end of ``line``."""
    context = parse_completion_context(line)
    word = context.current_word
    if context.word_index == 0:
        return complete_command(word, extra_commands)

    command = context.previous_words[0]
    if command == "systemctl" and context.word_index >= 2:
        return complete_systemctl_service(word)
    if command == "ssh":
        return _result(filter_completions(nodes, word), "value")
    if word.startswith(("/", "~", ".")):
        return complete_path(word, cwd)
    if word.startswith("-"):
        return complete_subcommand(command, word)
    if context.word_index == 1 and command in COMMAND_SUBCOMMANDS:
        return complete_subcommand(command, word)
    if command in _PATH_COMMANDS:
        return complete_path(word, cwd)
    return CompletionResult(completions=[], type="none")


def format_completions_for_display(completions: Sequence[str], width: int = 80) -> str:
    """Lay out candidates in columns, row by row, like bash does."""
    if not completions:
        return ""
    column = max(len(item) for item in completions) + 2
    per_row = max(1, width // column)
    rows = [completions[idx : idx + per_row] for idx in range(0, len(completions), per_row)]
    return "\r\n".join("".join(item.ljust(column) for item in row).rstrip() for row in rows)


def apply_completion(line: str, completion: str, context: CompletionContext | None = None) -> str:
    context = context or parse_completion_context(line)
    head = line[: len(line) - len(context.current_word)]
    return f"{head}{completion}"


def get_completion_suffix(result: CompletionResult) -> str:
    """A trailing space once the completion is unambiguous."""
    if result.is_partial or len(result.completions) != 1 or result.type == "none":
        return ""
    return " "
