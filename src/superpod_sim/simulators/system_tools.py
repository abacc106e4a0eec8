"""systemd service control (systemctl) and the kernel ring buffer (dmesg)."""

from __future__ import annotations

from datetime import datetime, timedelta

from loguru import logger

from superpod_sim.cluster.models import DGXNode
from superpod_sim.cluster.services import SERVICES, ServiceInfo, is_active, is_enabled, lookup_service
from superpod_sim.core.flags import FlagSchema, FlagSpec, format_suggestion, suggest
from superpod_sim.core.types import CommandContext, CommandResult, ParsedCommand
from superpod_sim.simulators.base import BaseSimulator, report_clock
from superpod_sim.simulators.pci_tools import JOURNALCTL_VERSION, journal_entries

DMESG_VERSION = "dmesg from util-linux 2.37.2"
SYSTEMCTL_VERBS = ("status", "start", "stop", "restart", "enable", "disable", "is-active", "is-enabled", "list-units")
_WANTS_DIR = "/etc/systemd/system/multi-user.target.wants"

DMESG_LEVELS: dict[str, int] = {
    "emerg": 0,
    "alert": 1,
    "crit": 2,
    "err": 3,
    "warn": 4,
    "notice": 5,
    "info": 6,
    "debug": 7,
}

_SYSTEMCTL_FLAGS = FlagSchema(
    "systemctl",
    [
        FlagSpec("no-pager"),
        FlagSpec("type", aliases=("t",), takes_value=True),
        FlagSpec("all", aliases=("a",)),
        FlagSpec("quiet", aliases=("q",)),
        FlagSpec("help", aliases=("h",)),
        FlagSpec("version"),
    ],
)

_DMESG_FLAGS = FlagSchema(
    "dmesg",
    [
        FlagSpec("ctime", aliases=("T",)),
        FlagSpec("level", aliases=("l",), takes_value=True),
        FlagSpec("kernel", aliases=("k",)),
        FlagSpec("nopager"),
        FlagSpec("help", aliases=("h",)),
        FlagSpec("version", aliases=("V",)),
    ],
)


def _ago(delta: timedelta) -> str:
    minutes = int(delta.total_seconds()) // 60
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}min ago" if hours else f"{minutes}min ago"


def render_status(node: DGXNode, service: ServiceInfo, ctx: CommandContext) -> str:
    active = is_active(node, service)
    enabled = "enabled" if is_enabled(node, service) else "disabled"
    preset = "enabled" if service.enabled else "disabled"
    lines = [
        f"{'●' if active else '○'} {service.unit} - {service.description}",
        f"     Loaded: loaded ({service.unit_file}; {enabled}; vendor preset: {preset})",
    ]
    if not active:
        lines.append("     Active: inactive (dead)")
        return "\n".join(lines)

    cluster = ctx.cluster
    now = report_clock(ctx)
    since = cluster.boot_time + timedelta(seconds=service.started_after) if cluster is not None else now
    binary = service.command.split()[0].rsplit("/", 1)[-1]
    lines += [
        f"     Active: active (running) since {since:%a %Y-%m-%d %H:%M:%S} UTC; {_ago(now - since)}",
        f"   Main PID: {service.pid} ({binary})",
        f"      Tasks: {service.tasks} (limit: 4915)",
        f"     CGroup: /system.slice/{service.unit}",
        f"             └─{service.pid} {service.command}",
    ]
    return "\n".join(lines)


def render_unit_list(node: DGXNode, *, show_all: bool) -> str:
    services = [service for service in SERVICES if show_all or is_active(node, service)]
    width = max(len(service.unit) for service in SERVICES) + 2
    lines = [f"  {'UNIT'.ljust(width)}LOAD   ACTIVE   SUB     DESCRIPTION"]
    for service in services:
        active = is_active(node, service)
        state, sub = ("active", "running") if active else ("inactive", "dead")
        lines.append(f"  {service.unit.ljust(width)}loaded {state.ljust(8)} {sub.ljust(7)} {service.description}")
    lines += ["", f"{len(services)} loaded units listed."]
    if not show_all:
        lines.append("To show all installed unit files use 'systemctl list-unit-files'.")
    return "\n".join(lines)


def kernel_ring(node: DGXNode, ctx: CommandContext, *, levels: set[int] | None = None, ctime: bool = False) -> str:
    """Kernel messages of the current boot, relative to boot unless ``ctime``."""
    cluster = ctx.cluster
    entries = [entry for entry in journal_entries(node, cluster) if entry.is_kernel]
    if levels is not None:
        entries = [entry for entry in entries if entry.priority in levels]
    boot = cluster.boot_time if cluster is not None else datetime(2024, 6, 15, 8, 0, 0)
    lines = []
    for entry in entries:
        if ctime:
            stamp = f"{entry.timestamp:%a %b %d %H:%M:%S %Y}"
        else:
            offset = max((entry.timestamp - boot).total_seconds(), 0.0)
            stamp = f"{offset:12.6f}"
        lines.append(f"[{stamp}] {entry.message}")
    return "\n".join(lines)


class SystemToolsSimulator(BaseSimulator):
    """systemctl over the node's unit catalogue, and dmesg over its kernel log."""

    name = "system-tools"
    version = "249"
    description = "Service control and kernel log"
    commands = ("systemctl", "dmesg")
    subcommands = {"systemctl": SYSTEMCTL_VERBS}

    def execute(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        if cmd.base_command == "dmesg":
            return self._dmesg(cmd, ctx)
        return self._systemctl(cmd, ctx)

    def _dmesg(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        checked = self.validate(_DMESG_FLAGS, cmd)
        if isinstance(checked, CommandResult):
            return checked
        cmd = checked
        if cmd.has_flag("help"):
            return self.help_result("dmesg")
        if cmd.has_flag("version"):
            return CommandResult.ok(DMESG_VERSION)

        node = self.current_node(ctx)
        if node is None:
            return CommandResult.error("dmesg: read kernel buffer failed: Operation not permitted")

        levels: set[int] | None = None
        if raw := cmd.flag_str("level"):
            levels = set()
            for name in raw.split(","):
                level = DMESG_LEVELS.get(name.strip().lower())
                if level is None:
                    return CommandResult.error(f"dmesg: unknown level '{name.strip()}'")
                levels.add(level)
        return CommandResult.ok(kernel_ring(node, ctx, levels=levels, ctime=cmd.has_flag("ctime")))

    def _systemctl(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        checked = self.validate(_SYSTEMCTL_FLAGS, cmd)
        if isinstance(checked, CommandResult):
            return checked
        cmd = checked
        if cmd.has_flag("help"):
            return self.help_result("systemctl")
        if cmd.has_flag("version"):
            return CommandResult.ok(f"{JOURNALCTL_VERSION}\n+PAM +AUDIT +SELINUX +APPARMOR +IMA +SMACK +SECCOMP")

        node = self.current_node(ctx)
        if node is None or ctx.store is None:
            return CommandResult.error("System has not been booted with systemd as init system (PID 1). Can't operate.")

        words = cmd.words
        verb, units = (words[0], words[1:]) if words else ("list-units", [])
        if verb not in SYSTEMCTL_VERBS:
            hint = format_suggestion(suggest(verb, SYSTEMCTL_VERBS))
            message = f"Unknown command verb {verb}."
            return CommandResult.error(f"{message}\n{hint}" if hint else message)
        if verb == "list-units":
            return CommandResult.ok(render_unit_list(node, show_all=cmd.has_flag("all")))
        if not units:
            return CommandResult.error("Too few arguments.")

        services: list[ServiceInfo] = []
        for unit in units:
            service = lookup_service(unit)
            if service is None:
                return self._missing_unit(verb, unit)
            services.append(service)

        if verb == "status":
            blocks = [render_status(node, service, ctx) for service in services]
            stopped = any(not is_active(node, service) for service in services)
            return CommandResult("\n\n".join(blocks), exit_code=3 if stopped else 0)
        if verb in ("is-active", "is-enabled"):
            check = is_active if verb == "is-active" else is_enabled
            states = [check(node, service) for service in services]
            if verb == "is-active":
                labels = ["active" if state else "inactive" for state in states]
            else:
                labels = ["enabled" if state else "disabled" for state in states]
            output = "" if cmd.has_flag("quiet") else "\n".join(labels)
            return CommandResult(output, exit_code=0 if all(states) else 3 if verb == "is-active" else 1)

        lines: list[str] = []
        for service in services:
            if verb in ("start", "restart"):
                ctx.store.set_service_state(node.id, service.name, active=True)
            elif verb == "stop":
                ctx.store.set_service_state(node.id, service.name, active=False)
            elif verb == "enable":
                if not is_enabled(node, service):
                    lines.append(f"Created symlink {_WANTS_DIR}/{service.unit} → {service.unit_file}.")
                ctx.store.set_service_state(node.id, service.name, enabled=True)
            else:
                if is_enabled(node, service):
                    lines.append(f"Removed {_WANTS_DIR}/{service.unit}.")
                ctx.store.set_service_state(node.id, service.name, enabled=False)
        logger.debug("systemctl verb={} units={} node={}", verb, [service.name for service in services], node.id)
        return CommandResult.ok("\n".join(lines))

    @staticmethod
    def _missing_unit(verb: str, unit: str) -> CommandResult:
        name = unit if unit.endswith(".service") else f"{unit}.service"
        if verb == "status":
            return CommandResult.error(f"Unit {name} could not be found.", exit_code=4)
        if verb == "is-active":
            return CommandResult("inactive", exit_code=3)
        if verb == "is-enabled":
            return CommandResult.error(f"Failed to get unit file state for {name}: No such file or directory")
        return CommandResult.error(f"Failed to {verb} {name}: Unit {name} not found.", exit_code=5)
