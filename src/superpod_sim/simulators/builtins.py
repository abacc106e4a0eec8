"""Shell builtins of the simulated terminal."""

from __future__ import annotations

from superpod_sim.core.definitions import load_definitions, render_help
from superpod_sim.core.parser import split_words
from superpod_sim.core.types import CommandContext, CommandResult, ParsedCommand
from superpod_sim.simulators.base import BaseSimulator

CLEAR_SCREEN = "\x1b[2J\x1b[H"
_BUILTINS = ("help", "hostname", "ssh", "history", "pwd", "echo", "clear")


class BuiltinsSimulator(BaseSimulator):
    """Commands the shell answers itself instead of a tool."""

    name = "builtins"
    version = "1.0"
    description = "Shell builtins"
    commands = _BUILTINS

    def execute(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        handler = getattr(self, f"_{cmd.base_command}", None)
        if handler is None:
            return CommandResult.error(f"{cmd.base_command}: command not found")
        return handler(cmd, ctx)

    @staticmethod
    def _help(cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        _ = ctx
        words = split_words(cmd.raw)[1:] if cmd.raw else cmd.words
        if words:
            return CommandResult.ok(render_help(words[0]))
        definitions = load_definitions()
        width = max(len(name) for name in definitions)
        lines = ["Available commands:", ""]
        lines += [f"  {name.ljust(width)}  {item.description}" for name, item in sorted(definitions.items())]
        lines += ["", "Type 'help <command>' or '<command> --help' for details."]
        return CommandResult.ok("\n".join(lines))

    @staticmethod
    def _hostname(cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        _ = cmd
        node = ctx.node()
        return CommandResult.ok(node.hostname if node is not None else ctx.current_node)

    @staticmethod
    def _ssh(cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        words = split_words(cmd.raw)[1:] if cmd.raw else cmd.words
        targets = [word for word in words if not word.startswith("-")]
        if not targets:
            return CommandResult.error("usage: ssh [user@]hostname", exit_code=255)
        target = targets[0].rpartition("@")[2]
        cluster = ctx.cluster
        node = cluster.find_node(target) if cluster is not None else None
        if node is None:
            return CommandResult.error(
                f"ssh: Could not resolve hostname {target}: Name or service not known", exit_code=255
            )
        ctx.current_node = node.id
        return CommandResult.ok(f"Welcome to {node.os_version} (GNU/Linux {node.kernel_version} x86_64)")

    @staticmethod
    def _history(cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        entries = list(enumerate(ctx.history, start=1))
        if cmd.words:
            if not cmd.words[0].isdigit():
                return CommandResult.error(f"history: {cmd.words[0]}: numeric argument required")
            count = int(cmd.words[0])
            entries = entries[-count:] if count else []
        return CommandResult.ok("\n".join(f"{idx:>5}  {line}" for idx, line in entries))

    @staticmethod
    def _pwd(cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        _ = cmd
        return CommandResult.ok(ctx.current_path)

    @staticmethod
    def _echo(cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        words = split_words(cmd.raw)[1:] if cmd.raw else cmd.words
        node = ctx.node()
        variables = {
            "HOSTNAME": node.hostname if node is not None else ctx.current_node,
            "PWD": ctx.current_path,
            "USER": "root",
            **ctx.environment,
        }
        rendered = []
        for word in words:
            if word.startswith("$"):
                rendered.append(variables.get(word[1:].strip("{}"), ""))
            else:
                rendered.append(word)
        return CommandResult.ok(" ".join(rendered))

    @staticmethod
    def _clear(cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        _ = (cmd, ctx)
        return CommandResult.ok(CLEAR_SCREEN)
