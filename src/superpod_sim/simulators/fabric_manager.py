"""NVIDIA Fabric Manager CLI for the NVSwitch fabric of one node."""

from __future__ import annotations

from superpod_sim.cluster.factory import NVSWITCH_PCI_BUSES, system_spec
from superpod_sim.cluster.models import DGXNode
from superpod_sim.cluster.services import is_active, lookup_service
from superpod_sim.core.flags import FlagSchema, FlagSpec, format_suggestion, suggest
from superpod_sim.core.formatting import BOLD, GREEN, RED, YELLOW, colorize, key_value_block, pipe_table
from superpod_sim.core.types import CommandContext, CommandResult, ParsedCommand
from superpod_sim.errors import ConfigurationError
from superpod_sim.simulators.base import BaseSimulator
from superpod_sim.simulators.files import FABRICMANAGER_CFG

FM_VERSION = "535.129.03"
FM_SERVICE = "nvidia-fabricmanager"
FM_CONFIG = "/etc/nvidia-fabricmanager/fabricmanager.cfg"
SUBCOMMANDS = ("status", "query", "start", "stop", "restart", "config", "diag", "topo")
QUERY_TYPES = ("nvswitch", "topology", "nvlink")
_RULE = "-" * 60

_FLAGS = FlagSchema(
    "nv-fabricmanager",
    [
        FlagSpec("help", aliases=("h",)),
        FlagSpec("version", aliases=("v",)),
    ],
)


def nvswitch_count(node: DGXNode) -> int:
    try:
        return system_spec(node.system_type).nvswitch_count
    except ConfigurationError:
        return 0


def _links(node: DGXNode) -> tuple[int, int]:
    total = sum(len(gpu.nvlinks) for gpu in node.gpus)
    active = sum(1 for gpu in node.gpus for link in gpu.nvlinks if link.status == "Active")
    return total, active


def _running(node: DGXNode) -> bool:
    service = lookup_service(FM_SERVICE)
    return service is not None and is_active(node, service)


def _title(text: str) -> str:
    return f"{colorize(text, BOLD)}\n{_RULE}"


def render_status(node: DGXNode) -> str:
    total, active = _links(node)
    running = _running(node)
    healthy = running and active == total and all(gpu.health_status == "OK" for gpu in node.gpus)
    service = [
        ("Fabric Manager", colorize("Running", GREEN) if running else colorize("Stopped", RED)),
        ("Version", FM_VERSION),
        ("Config File", FM_CONFIG),
    ]
    topology = [
        ("System Type", node.system_type),
        ("GPUs", len(node.gpus)),
        ("NVSwitches", nvswitch_count(node)),
        ("NVLinks Total", total),
        ("NVLinks Active", active),
        ("Topology", "Fully Connected (NVSwitch)" if nvswitch_count(node) else "Direct NVLink"),
    ]
    problems = (total - active) + sum(1 for gpu in node.gpus if gpu.health_status != "OK") + (0 if running else 1)
    health = [
        ("Overall", colorize("Healthy", GREEN) if healthy else colorize("Degraded", YELLOW)),
        ("Errors Detected", problems),
    ]
    return "\n".join(
        [
            _title("NVIDIA Fabric Manager Status"),
            "",
            "Service Status:",
            key_value_block(service, indent=2),
            "",
            "Fabric Topology:",
            key_value_block(topology, indent=2),
            "",
            "Health Status:",
            key_value_block(health, indent=2),
        ]
    )


def render_nvswitches(node: DGXNode) -> str:
    count = nvswitch_count(node)
    if count == 0:
        return f"{_title('NVSwitch Status')}\n\nNo NVSwitches detected in this system configuration."
    rows = []
    for idx, bus in enumerate(NVSWITCH_PCI_BUSES[:count]):
        # Links land on switches round-robin by link id.
        links = [link for gpu in node.gpus for link in gpu.nvlinks if link.remote_device == f"NVSwitch{idx}"]
        down = sum(1 for link in links if link.status != "Active")
        state = "Active" if down == 0 else "Degraded"
        rows.append([str(idx), f"0000:{bus}:00.0", state, f"{len(links) - down}/{len(links)}"])
    table = pipe_table(["NVSwitch", "PCI Bus Id", "State", "Links Up"], rows)
    degraded = sum(1 for row in rows if row[2] != "Active")
    summary = "All NVSwitches operational." if degraded == 0 else f"{degraded} NVSwitch(es) degraded."
    return f"{_title('NVSwitch Status')}\n\n{table}\n\nTotal NVSwitches: {count}\n{summary}"


def render_topology(node: DGXNode) -> str:
    lines = [_title("Fabric Topology"), "", f"System: {node.system_type}", f"Hostname: {node.hostname}", ""]
    lines.append("GPU Topology:")
    for gpu in node.gpus:
        active = sum(1 for link in gpu.nvlinks if link.status == "Active")
        lines.append(f"  GPU {gpu.id}: {gpu.name} - {active}/{len(gpu.nvlinks)} NVLinks active")
    count = nvswitch_count(node)
    if count:
        lines += ["", "NVSwitch Connectivity:"]
        for idx in range(count):
            connected = sorted(
                {gpu.id for gpu in node.gpus for link in gpu.nvlinks if link.remote_device == f"NVSwitch{idx}"}
            )
            lines.append(f"  NVSwitch {idx}: Connected to GPUs [{', '.join(str(gpu_id) for gpu_id in connected)}]")
    return "\n".join(lines)


def render_nvlinks(node: DGXNode) -> str:
    rows = []
    for gpu in node.gpus:
        for link in gpu.nvlinks:
            up = link.status == "Active"
            state = colorize("Active", GREEN) if up else colorize(link.status, RED)
            bandwidth = f"{link.speed:.3f} GB/s" if up else "N/A"
            rows.append([str(gpu.id), str(link.link_id), state, link.remote_device, bandwidth])
    total, active = _links(node)
    table = pipe_table(["GPU", "Link", "State", "Remote", "Bandwidth"], rows)
    return (
        f"{_title('NVLink Status')}\n\n{table}\n\n"
        f"Total NVLinks: {total}\nActive NVLinks: {active}\nInactive NVLinks: {total - active}"
    )


def render_diag(node: DGXNode) -> str:
    running = _running(node)
    total, active = _links(node)
    errors = sum(len(gpu.xid_errors) for gpu in node.gpus)
    count = nvswitch_count(node)
    passed = running and active == total and errors == 0

    def verdict(ok: bool, good: str, bad: str) -> str:
        return colorize(good, GREEN) if ok else colorize(bad, YELLOW)

    lines = [_title("NVIDIA Fabric Manager Diagnostics"), "", "Running fabric diagnostics...", ""]
    lines += [
        "[1/4] Checking Fabric Manager Service",
        f"  Service Status: {verdict(running, 'Running', 'Stopped')}",
        "",
        "[2/4] Checking NVSwitch Devices",
        f"  Detected: {count} NVSwitches" if count else "  No NVSwitch devices detected",
        "",
        "[3/4] Checking NVLink Connections",
        f"  Total Links: {total}",
        f"  Active Links: {active}",
        f"  Status: {verdict(active == total, 'All Links Active', 'Some Links Inactive')}",
        "",
        "[4/4] Checking Error Logs",
        f"  Recent XID Errors: {errors}",
        f"  Status: {verdict(errors == 0, 'No Errors', 'Errors Detected')}",
        "",
        _RULE,
        f"Diagnostic Summary: {verdict(passed, 'PASSED', 'WARNINGS')}",
    ]
    return "\n".join(lines)


def render_topo_map(node: DGXNode) -> str:
    count = nvswitch_count(node)
    lines = [_title("NVSwitch Fabric Topology Map"), ""]
    if count == 0:
        lines += ["  No NVSwitch fabric detected.", "  System uses direct GPU-to-GPU NVLink connections."]
        return "\n".join(lines)
    lines += [
        "  " + " ".join(f"[SW{idx}]" for idx in range(count)),
        "  " + "=" * (6 * count - 1),
        "  " + " ".join(f"[G{gpu.id}]" for gpu in node.gpus),
        "",
        "  Legend: [SW#] = NVSwitch #, [G#] = GPU #",
        f"  Each GPU connects to all {count} NVSwitches; GPU-to-GPU traffic crosses the switch fabric.",
    ]
    return "\n".join(lines)


class FabricManagerSimulator(BaseSimulator):
    """nv-fabricmanager; start and stop drive the nvidia-fabricmanager unit."""

    name = "nv-fabricmanager"
    version = FM_VERSION
    description = "NVIDIA Fabric Manager CLI"
    commands = ("nv-fabricmanager",)
    subcommands = {"nv-fabricmanager": SUBCOMMANDS}

    def execute(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        checked = self.validate(_FLAGS, cmd)
        if isinstance(checked, CommandResult):
            return checked
        cmd = checked
        if cmd.has_flag("version"):
            return CommandResult.ok(f"Fabric Manager version is : {FM_VERSION}")
        if cmd.has_flag("help") or not cmd.words:
            return self.help_result()

        verb, args = cmd.words[0], cmd.words[1:]
        if verb not in SUBCOMMANDS:
            hint = format_suggestion(suggest(verb, SUBCOMMANDS))
            message = f"Unknown subcommand: {verb}\nRun 'nv-fabricmanager --help' for usage."
            return CommandResult.error(f"{message}\n{hint}" if hint else message)

        node = self.current_node(ctx)
        if node is None:
            return CommandResult.error("Error: Unable to determine current node")

        if verb == "status":
            return CommandResult.ok(render_status(node))
        if verb == "query":
            kind = args[0] if args else ""
            if kind == "nvswitch":
                return CommandResult.ok(render_nvswitches(node))
            if kind == "topology":
                return CommandResult.ok(render_topology(node))
            if kind == "nvlink":
                return CommandResult.ok(render_nvlinks(node))
            usage = "\n".join(f"  {item}" for item in QUERY_TYPES)
            return CommandResult.error(f"Query types:\n{usage}\n\nUsage: nv-fabricmanager query <type>")
        if verb == "config":
            if args and args[0] != "show":
                return CommandResult.error(
                    f"Unknown config option: {args[0]}\nUse 'nv-fabricmanager config show' to display configuration."
                )
            return CommandResult.ok(f"Configuration file: {FM_CONFIG}\n\n{FABRICMANAGER_CFG.rstrip()}")
        if verb == "diag":
            return CommandResult.ok(render_diag(node))
        if verb == "topo":
            return CommandResult.ok(render_topo_map(node))
        return self._control(verb, node, ctx)

    @staticmethod
    def _control(verb: str, node: DGXNode, ctx: CommandContext) -> CommandResult:
        if ctx.store is None:
            return CommandResult.error("Error: Unable to reach the service manager")
        ctx.store.set_service_state(node.id, FM_SERVICE, active=verb != "stop")
        if verb == "stop":
            return CommandResult.ok(
                "Stopping NVIDIA Fabric Manager...\n" + colorize("NVIDIA Fabric Manager stopped.", YELLOW)
            )
        lines = ["Initializing NVSwitch fabric...", f"Configuring NVLink topology for {len(node.gpus)} GPUs..."]
        done = "restarted" if verb == "restart" else "started"
        return CommandResult.ok("\n".join([*lines, colorize(f"NVIDIA Fabric Manager {done} successfully.", GREEN)]))
