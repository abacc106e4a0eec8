"""NVIDIA System Management (nvsm) shell and health checks."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field

from superpod_sim.cluster.health import (
    ecc_status,
    ib_port_status,
    nvlink_status,
    temperature_status,
    worst,
    xid_status,
)
from superpod_sim.cluster.models import DGXNode, HealthStatus
from superpod_sim.core.flags import FlagSchema, FlagSpec
from superpod_sim.core.formatting import color_status, dot_leader, section
from superpod_sim.core.parser import split_words
from superpod_sim.core.types import CommandContext, CommandResult, ParsedCommand
from superpod_sim.simulators.base import BaseSimulator, report_clock

NVSM_VERSION = "24.03"
DEFAULT_PATH = "/systems/localhost"
VERBS = ("cd", "show", "dump", "help", "exit", "quit")
SUMMARY_LIMIT = 20
NO_DAEMON = "ERROR: Cannot connect to NVSM daemon. Is nvsm-core running on this node?"
ROOT_FS_WARNING = 85
ROOT_FS_CRITICAL = 95

_LABELS: dict[HealthStatus, str] = {"OK": "Healthy", "Warning": "Warning", "Critical": "Critical"}

HELP_TEXT = """NVIDIA System Management (NVSM) Interactive Shell

Verbs:
  cd [path]                 Change the current target (absolute, relative or ..)
  show [target]             Show properties, targets and verbs of a target
  show health [--detailed]  Run the system health checks
  dump health               Collect a health snapshot archive
  help                      Show this help
  exit, quit                Leave the shell
"""

_FLAGS = FlagSchema(
    "nvsm",
    [
        FlagSpec("detailed"),
        FlagSpec("help", aliases=("h",)),
        FlagSpec("version", aliases=("V",)),
    ],
)


@dataclass(frozen=True)
class NvsmState:
    path: str = DEFAULT_PATH

    @property
    def prompt(self) -> str:
        return "nvsm> " if self.path == DEFAULT_PATH else f"nvsm({self.path})> "


@dataclass(frozen=True)
class NvsmTarget:
    """One node of the nvsm object tree."""

    path: str
    properties: list[tuple[str, object]] = field(default_factory=list)
    targets: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class HealthCheck:
    description: str
    status: HealthStatus

    def render(self) -> str:
        return dot_leader(self.description, color_status(_LABELS[self.status]))


def resolve(node: DGXNode, path: str) -> NvsmTarget | None:
    """Look up a normalized absolute path in the node's object tree."""
    parts = [part for part in path.split("/") if part]
    if not parts:
        return NvsmTarget("/", [("Name", "root")], ["systems"])
    if parts[0] != "systems":
        return None
    if len(parts) == 1:
        return NvsmTarget("/systems", [("Count", 1)], ["localhost"])
    if parts[1] != "localhost":
        return None
    if len(parts) == 2:
        return NvsmTarget(
            DEFAULT_PATH,
            [
                ("Hostname", node.hostname),
                ("SystemType", node.system_type),
                ("Manufacturer", "NVIDIA"),
                ("OSVersion", node.os_version),
                ("KernelVersion", node.kernel_version),
                ("HealthStatus", _LABELS[node.health_status]),
            ],
            ["gpus", "memory", "network", "power", "processors", "storage", "thermal"],
        )
    return _resolve_child(node, parts[2], parts[3:])


def _resolve_child(node: DGXNode, category: str, rest: list[str]) -> NvsmTarget | None:
    base = f"{DEFAULT_PATH}/{category}"
    if len(rest) > 1:
        return None
    leaf = rest[0] if rest else None

    if category == "gpus":
        if leaf is None:
            return NvsmTarget(
                base,
                [
                    ("GPUCount", len(node.gpus)),
                    ("DriverVersion", node.nvidia_driver_version),
                    ("CUDAVersion", node.cuda_version),
                ],
                [f"GPU{gpu.id}" for gpu in node.gpus],
            )
        for gpu in node.gpus:
            if leaf == f"GPU{gpu.id}":
                return NvsmTarget(
                    f"{base}/{leaf}",
                    [
                        ("Name", gpu.name),
                        ("UUID", gpu.uuid),
                        ("PCIAddress", gpu.pci_address),
                        ("Temperature", f"{gpu.temperature} C"),
                        ("PowerDraw", f"{gpu.power_draw:.0f} W"),
                        ("MemoryTotal", f"{gpu.memory_total} MiB"),
                        ("HealthStatus", _LABELS[gpu.health_status]),
                    ],
                )
        return None

    if category == "network":
        if leaf is None:
            return NvsmTarget(base, [("AdapterCount", len(node.hcas))], [hca.device_name for hca in node.hcas])
        for hca in node.hcas:
            if leaf == hca.device_name:
                port = hca.ports[0] if hca.ports else None
                return NvsmTarget(
                    f"{base}/{leaf}",
                    [
                        ("Model", hca.ca_type),
                        ("Firmware", hca.firmware),
                        ("State", port.state if port else "Down"),
                        ("Rate", f"{port.rate} Gb/s" if port else "0"),
                    ],
                )
        return None

    if category == "power":
        supplies = [sensor for sensor in node.bmc.sensors if sensor.name.startswith("PSU")]
        if leaf is None:
            return NvsmTarget(base, [("PowerState", node.bmc.power_state)], [s.name.split()[0] for s in supplies])
        for sensor in supplies:
            if leaf == sensor.name.split()[0]:
                return NvsmTarget(f"{base}/{leaf}", [("PowerWatts", sensor.reading), ("Status", "OK")])
        return None

    if category == "processors":
        if leaf is None:
            return NvsmTarget(
                base,
                [
                    ("Model", node.cpu_model),
                    ("Sockets", node.cpu_count),
                    ("CoresPerSocket", node.cores_per_socket),
                    ("LogicalCores", node.logical_cores),
                ],
                [f"CPU{idx}" for idx in range(node.cpu_count)],
            )
        if leaf in {f"CPU{idx}" for idx in range(node.cpu_count)}:
            return NvsmTarget(f"{base}/{leaf}", [("Model", node.cpu_model), ("Cores", node.cores_per_socket)])
        return None

    if leaf is not None:
        return None
    if category == "memory":
        return NvsmTarget(base, [("TotalMemoryGiB", node.ram_total), ("UsedMemoryGiB", node.ram_used)])
    if category == "storage":
        return NvsmTarget(base, [("RootFSUsage", f"{node.root_fs_usage}%")])
    if category == "thermal":
        temps = [sensor for sensor in node.bmc.sensors if sensor.unit == "degrees C"]
        return NvsmTarget(base, [(sensor.name.replace(" ", ""), sensor.reading) for sensor in temps])
    return None


def render_target(target: NvsmTarget) -> str:
    lines = [target.path, "Properties:"]
    lines.extend(f"  {key} = {value}" for key, value in target.properties)
    lines.append("Targets:")
    lines.extend(f"  {name}" for name in target.targets)
    lines.append("Verbs:")
    lines.extend(f"  {verb}" for verb in ("cd", "show", "dump"))
    return "\n".join(lines)


def health_checks(node: DGXNode) -> list[HealthCheck]:
    """Ordered checks behind ``show health``."""
    fs_status: HealthStatus = "OK"
    if node.root_fs_usage > ROOT_FS_CRITICAL:
        fs_status = "Critical"
    elif node.root_fs_usage > ROOT_FS_WARNING:
        fs_status = "Warning"

    checks = [
        HealthCheck("Verify installed DIMM memory sticks", "OK"),
        HealthCheck(f"Number of logical CPU cores [{node.logical_cores}]", "OK"),
        HealthCheck(f"Root file system usage [{node.root_fs_usage}%]", fs_status),
    ]
    for gpu in node.gpus:
        speed: HealthStatus = "Warning" if gpu.pcie_link_speed < 16 else "OK"
        width: HealthStatus = "Warning" if gpu.pcie_link_width < 16 else "OK"
        checks.append(HealthCheck(f"GPU link speed [{gpu.pci_address}][{gpu.pcie_link_speed}GT/s]", speed))
        checks.append(HealthCheck(f"GPU link width [{gpu.pci_address}][x{gpu.pcie_link_width}]", width))
    for gpu in node.gpus:
        checks.append(HealthCheck(f"GPU temperature [GPU{gpu.id}]", temperature_status(gpu.temperature)))
        checks.append(HealthCheck(f"GPU ECC status [GPU{gpu.id}]", ecc_status(gpu.ecc_errors)))
        checks.append(HealthCheck(f"GPU XID error check [GPU{gpu.id}]", xid_status(gpu)))
    for gpu in node.gpus:
        checks.extend(
            HealthCheck(f"NVLink {link.link_id} status [GPU{gpu.id}]", nvlink_status(link)) for link in gpu.nvlinks
        )
    for hca in node.hcas:
        checks.extend(
            HealthCheck(f"InfiniBand port {port.port_number} [{hca.ca_type}] {hca.device_name}", ib_port_status(port))
            for port in hca.ports
        )
    return checks


def render_health(node: DGXNode, *, detailed: bool) -> str:
    checks = health_checks(node)
    shown = checks if detailed else checks[:SUMMARY_LIMIT]
    lines = ["Checks", "------", *(check.render() for check in shown)]
    if len(checks) > len(shown):
        lines.append(f"... {len(checks) - len(shown)} more checks (use --detailed to see all)")

    # Reported GPU and node health count alongside the checks.
    reported = [node.health_status, *(gpu.health_status for gpu in node.gpus)]
    overall = worst([*(check.status for check in checks), *reported])
    counts = {status: sum(1 for check in checks if check.status == status) for status in _LABELS}
    lines.extend(
        [
            "",
            section("Health Summary"),
            f"Checks run: {len(checks)}",
            f"Healthy: {counts['OK']}  Warning: {counts['Warning']}  Critical: {counts['Critical']}",
            f"Overall system health: {color_status(_LABELS[overall])}",
        ]
    )
    return "\n".join(lines)


def render_dump(node: DGXNode, ctx: CommandContext) -> str:
    archive = f"/tmp/nvsm-health-{node.hostname}-{report_clock(ctx):%Y%m%d%H%M%S}.tar.xz"
    return "\n".join(
        [
            "Collecting health information...",
            f"Running {len(health_checks(node))} health checks on {node.hostname}",
            f"Writing output to {archive}",
            "Done.",
        ]
    )


def transition(state: NvsmState, line: str, node: DGXNode, ctx: CommandContext) -> tuple[NvsmState, CommandResult]:
    """Apply one interactive line; a result without a prompt ends the shell."""
    words = split_words(line.strip())
    if not words:
        return state, CommandResult.ok(prompt=state.prompt)
    verb, args = words[0], words[1:]

    if verb in ("exit", "quit"):
        return NvsmState(), CommandResult.ok()
    if verb == "help":
        return state, CommandResult.ok(HELP_TEXT, prompt=state.prompt)
    if verb == "cd":
        if not args:
            state = NvsmState()
            return state, CommandResult.ok(prompt=state.prompt)
        path = posixpath.normpath(posixpath.join(state.path, args[0]))
        path = "/" + path.lstrip("/")
        if resolve(node, path) is None:
            current = resolve(node, state.path)
            available = ", ".join(current.targets) if current and current.targets else "(none)"
            message = f"ERROR: Target '{args[0]}' does not exist.\nAvailable targets: {available}"
            return state, CommandResult.error(message, prompt=state.prompt)
        state = NvsmState(path=path)
        return state, CommandResult.ok(prompt=state.prompt)
    if verb == "show":
        if args and args[0] == "health":
            return state, CommandResult.ok(render_health(node, detailed="--detailed" in args), prompt=state.prompt)
        path = posixpath.normpath(posixpath.join(state.path, args[0])) if args else state.path
        target = resolve(node, "/" + path.lstrip("/"))
        if target is None:
            return state, CommandResult.error(f"ERROR: Target '{args[0]}' does not exist.", prompt=state.prompt)
        return state, CommandResult.ok(render_target(target), prompt=state.prompt)
    if verb == "dump":
        if args[:1] != ["health"]:
            return state, CommandResult.error("Usage: dump health", prompt=state.prompt)
        return state, CommandResult.ok(render_dump(node, ctx), prompt=state.prompt)

    message = f"ERROR: Unknown verb '{verb}'. Type 'help' for a list of verbs."
    return state, CommandResult.error(message, prompt=state.prompt)


class NvsmSimulator(BaseSimulator):
    name = "nvsm"
    version = NVSM_VERSION
    description = "NVIDIA System Management"
    commands = ("nvsm",)
    subcommands = {"nvsm": ("show", "dump", "cd")}

    def __init__(self) -> None:
        self.state = NvsmState()

    def execute(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        checked = self.validate(_FLAGS, cmd)
        if isinstance(checked, CommandResult):
            return checked
        cmd = checked
        if cmd.has_flag("help"):
            return self.help_result(title="NVIDIA System Management (NVSM)")
        if cmd.has_flag("version"):
            return CommandResult.ok(f"nvsm version {NVSM_VERSION}")

        node = self.current_node(ctx)
        if node is None:
            return CommandResult.error(NO_DAEMON)

        words = split_words(cmd.raw)[1:] if cmd.raw else [*cmd.words, *(f"--{key}" for key in cmd.flags)]
        if not words:
            self.state = NvsmState()
            return CommandResult.ok("NVIDIA System Management Interface\n", prompt=self.state.prompt)
        if words[0] not in ("show", "dump", "cd"):
            return CommandResult.error(f"nvsm: Unknown command '{words[0]}'. Run 'nvsm --help' for usage.")

        _, result = transition(NvsmState(), " ".join(words), node, ctx)
        return CommandResult(output=result.output, exit_code=result.exit_code)

    def execute_interactive(self, line: str, ctx: CommandContext) -> CommandResult:
        node = self.current_node(ctx)
        if node is None:
            return CommandResult.error(NO_DAEMON, prompt=self.state.prompt)
        self.state, result = transition(self.state, line, node, ctx)
        return result
