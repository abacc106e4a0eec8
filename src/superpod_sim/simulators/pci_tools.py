"""PCI bus listing (lspci) and the systemd journal (journalctl)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from superpod_sim.cluster.factory import NVSWITCH_PCI_BUSES, system_spec
from superpod_sim.cluster.health import ecc_status, ib_port_status, temperature_status
from superpod_sim.cluster.models import GPU, ClusterConfig, DGXNode
from superpod_sim.cluster.services import SERVICES, is_active
from superpod_sim.cluster.xid import xid_description, xid_severity
from superpod_sim.core.flags import FlagSchema, FlagSpec
from superpod_sim.core.types import CommandContext, CommandResult, ParsedCommand
from superpod_sim.errors import ConfigurationError
from superpod_sim.simulators.base import BaseSimulator, report_clock
from superpod_sim.simulators.slurm import SLURM_VERSION

LSPCI_VERSION = "3.7.0"
JOURNALCTL_VERSION = "systemd 249 (249.11-0ubuntu3.12)"

PRIORITIES: dict[str, int] = {
    "emerg": 0,
    "alert": 1,
    "crit": 2,
    "err": 3,
    "warning": 4,
    "notice": 5,
    "info": 6,
    "debug": 7,
}

# Extra kernel lines the driver prints after specific XIDs.
XID_FOLLOW_UPS: dict[int, tuple[str, ...]] = {
    8: ("NVRM: GPU at PCI:{pci}: GSP firmware reported an error, GPU stopped processing",),
    13: ("NVRM: Graphics Exception on GPU {pci}: ESR 0x405840=0x80000000",),
    31: ("NVRM: MMU Fault on GPU {pci}: ENGINE GRAPHICS GPCCLIENT_T1_0 faulted @ 0x7f2a_00000000",),
    43: ("NVRM: GPU likely hung; channel reset required on GPU {pci}",),
    48: ("NVRM: DBE (double-bit error) ECC error detected on GPU {pci}; page retirement pending",),
    63: ("NVRM: Row remapping resources exhausted on GPU {pci}; reset required to apply pending remaps",),
    64: ("NVRM: Row remapper failed to record a pending remap on GPU {pci}",),
    74: ("NVRM: NVLink: Fatal error detected on link 0 (0x0, 0x0, 0x10000) on GPU {pci}",),
    79: (
        "NVRM: GPU at PCI:{pci}: GPU has fallen off the bus.",
        "NVRM: GPU crash dump has been created. If possible, please run nvidia-bug-report.sh",
    ),
    92: ("NVRM: High single-bit ECC error rate on GPU {pci}",),
    94: ("NVRM: Contained ECC error on GPU {pci}; affected application terminated",),
    95: ("NVRM: Uncontained ECC error on GPU {pci}; GPU reset required",),
    119: ("NVRM: GSP RPC timeout on GPU {pci}; driver will attempt recovery",),
}

_LSPCI_FLAGS = FlagSchema(
    "lspci",
    [
        FlagSpec("v"),
        FlagSpec("vv"),
        FlagSpec("vvv"),
        FlagSpec("d", takes_value=True),
        FlagSpec("s", takes_value=True),
        FlagSpec("k"),
        FlagSpec("n"),
        FlagSpec("nn"),
        FlagSpec("D"),
        FlagSpec("help", aliases=("h",)),
        FlagSpec("version", aliases=("V",)),
    ],
)
_JOURNAL_FLAGS = FlagSchema(
    "journalctl",
    [
        FlagSpec("boot", aliases=("b",)),
        FlagSpec("dmesg", aliases=("k",)),
        FlagSpec("unit", aliases=("u",), takes_value=True),
        FlagSpec("priority", aliases=("p",), takes_value=True),
        FlagSpec("lines", aliases=("n",), takes_value=True),
        FlagSpec("grep", aliases=("g",), takes_value=True),
        FlagSpec("reverse", aliases=("r",)),
        FlagSpec("no-pager"),
        FlagSpec("help", aliases=("h",)),
        FlagSpec("version"),
    ],
)


@dataclass(frozen=True)
class PciDevice:
    address: str
    class_name: str
    class_code: str
    vendor_id: str
    device_id: str
    description: str
    subsystem: str
    driver: str
    modules: str
    gpu: GPU | None = None


@dataclass(frozen=True)
class JournalEntry:
    timestamp: datetime
    priority: int
    source: str
    message: str
    unit: str = ""

    @property
    def is_kernel(self) -> bool:
        return self.source == "kernel"

    def render(self, hostname: str) -> str:
        return f"{self.timestamp:%b %d %H:%M:%S} {hostname} {self.source}: {self.message}"


def pci_devices(node: DGXNode) -> list[PciDevice]:
    """Every PCI function of interest on the node, ordered by address."""
    try:
        spec = system_spec(node.system_type)
        device_id, device_name, switches = spec.pci_device_id, spec.pci_device_name, spec.nvswitch_count
    except ConfigurationError:
        device_id, device_name, switches = "2330", "GH100 [H100 SXM5 80GB]", 4

    devices = [
        PciDevice(
            address=gpu.pci_address,
            class_name="3D controller",
            class_code="0302",
            vendor_id="10de",
            device_id=device_id,
            description=f"NVIDIA Corporation {device_name} (rev a1)",
            subsystem="NVIDIA Corporation Device 16c1",
            driver="nvidia",
            modules="nvidiafb, nouveau, nvidia_drm, nvidia",
            gpu=gpu,
        )
        for gpu in node.gpus
    ]
    devices.extend(
        PciDevice(
            address=hca.pci_address,
            class_name="Infiniband controller",
            class_code="0207",
            vendor_id="15b3",
            device_id="1021",
            description=f"Mellanox Technologies {hca.chip} Family [{hca.ca_type} InfiniBand]",
            subsystem=f"Mellanox Technologies {hca.ca_type} InfiniBand adapter",
            driver="mlx5_core",
            modules="mlx5_core",
        )
        for hca in node.hcas
    )
    devices.extend(
        PciDevice(
            address=f"0000:{bus}:00.0",
            class_name="Bridge",
            class_code="0680",
            vendor_id="10de",
            device_id="22a3",
            description="NVIDIA Corporation Device 22a3 (rev a1)",
            subsystem="NVIDIA Corporation Device 1796",
            driver="nvidia-nvswitch",
            modules="nvidia",
        )
        for bus in NVSWITCH_PCI_BUSES[:switches]
    )
    devices.extend(
        PciDevice(
            address=f"0000:{bus}:00.0",
            class_name="Non-Volatile memory controller",
            class_code="0108",
            vendor_id="144d",
            device_id="a824",
            description="Samsung Electronics Co Ltd NVMe SSD Controller PM173X",
            subsystem="Samsung Electronics Co Ltd Device a809",
            driver="nvme",
            modules="nvme",
        )
        for bus in ("c1", "c2")
    )
    return sorted(devices, key=lambda device: device.address)


def _annotations(device: PciDevice) -> list[str]:
    gpu = device.gpu
    if gpu is None:
        return []
    notes: list[str] = []
    for error in gpu.xid_errors:
        if xid_severity(error) == "Critical":
            notes.append(f"!!! Device is in error state (XID {error.code}): {xid_description(error)}")
    if temperature_status(gpu.temperature) != "OK":
        notes.append(f"!!! Thermal throttling active ({gpu.temperature:g}C)")
    return list(dict.fromkeys(notes))


def render_lspci(devices: list[PciDevice], *, verbosity: int, numeric: str, kernel: bool) -> str:
    blocks: list[str] = []
    for device in devices:
        if numeric == "n":
            head = f"{device.address} {device.class_code}: {device.vendor_id}:{device.device_id} (rev a1)"
        elif numeric == "nn":
            head = (
                f"{device.address} {device.class_name} [{device.class_code}]: "
                f"{device.description} [{device.vendor_id}:{device.device_id}]"
            )
        else:
            head = f"{device.address} {device.class_name}: {device.description}"
        lines = [head]
        if verbosity >= 1:
            lines.extend(
                [
                    f"\tSubsystem: {device.subsystem}",
                    "\tControl: I/O- Mem+ BusMaster+ SpecCycle- MemWINV- VGASnoop- ParErr+ Stepping- SERR+ DisINTx+",
                    "\tStatus: Cap+ 66MHz- UDF- FastB2B- ParErr- DEVSEL=fast >TAbort- <TAbort- <MAbort- >SERR-",
                    "\tLatency: 0",
                    "\tInterrupt: pin A routed to IRQ 255",
                    "\tNUMA node: 0" if device.address < "0000:80" else "\tNUMA node: 1",
                    "\tMemory at a4000000 (32-bit, non-prefetchable) [size=16M]",
                ]
            )
            if device.gpu is not None:
                lines.append("\tMemory at 6b000000000 (64-bit, prefetchable) [size=128G]")
        if verbosity >= 2:
            gpu = device.gpu
            speed = gpu.pcie_link_speed if gpu else 16
            width = gpu.pcie_link_width if gpu else 16
            speed_note = " (downgraded)" if speed < 16 else ""
            width_note = " (downgraded)" if width < 16 else " (ok)"
            lines.extend(
                [
                    "\tCapabilities: [60] Express (v2) Endpoint, MSI 00",
                    "\t\tLnkCap:\tPort #0, Speed 16GT/s, Width x16, ASPM not supported",
                    f"\t\tLnkSta:\tSpeed {speed}GT/s{speed_note}, Width x{width}{width_note}",
                ]
            )
        if verbosity >= 1 or kernel:
            lines.append(f"\tKernel driver in use: {device.driver}")
            lines.append(f"\tKernel modules: {device.modules}")
        if verbosity >= 1:
            lines.extend(f"\t{note}" for note in _annotations(device))
        blocks.append("\n".join(lines))
    separator = "\n\n" if verbosity >= 1 else "\n"
    return separator.join(blocks)


def _xid_pid(gpu: GPU, code: int, pid: int | None) -> int:
    return pid if pid is not None else 2000 + gpu.id * 37 + code


def journal_entries(node: DGXNode, cluster: ClusterConfig | None) -> list[JournalEntry]:
    """Journal of the current boot with the node's faults merged in, oldest first."""
    boot = cluster.boot_time if cluster is not None else datetime(2024, 6, 15, 8, 0, 0)
    try:
        expected = system_spec(node.system_type).gpu_count
    except ConfigurationError:
        expected = len(node.gpus)

    def at(seconds: float) -> datetime:
        return boot + timedelta(seconds=seconds)

    entries = [
        JournalEntry(at(0), 5, "kernel", f"Linux version {node.kernel_version} (buildd@lcy02-amd64) #35-Ubuntu SMP"),
        JournalEntry(at(0), 6, "kernel", f"Command line: BOOT_IMAGE=/vmlinuz-{node.kernel_version} root=/dev/md0 ro"),
    ]
    entries.extend(
        JournalEntry(at(1), 6, "kernel", f"pci {gpu.pci_address}: [10de:{_device_id(node)}] type 00 class 0x030200")
        for gpu in node.gpus
    )
    entries.append(JournalEntry(at(4), 5, "kernel", "nvidia: loading out-of-tree module taints kernel."))
    entries.append(
        JournalEntry(
            at(4), 6, "kernel", f"NVRM: loading NVIDIA UNIX x86_64 Kernel Module  {node.nvidia_driver_version}"
        )
    )
    addresses = [gpu.pci_address for gpu in node.gpus]
    for idx in range(expected):
        address = addresses[idx] if idx < len(addresses) else f"0000:{idx:02x}:00.0"
        entries.append(JournalEntry(at(5 + idx * 0.25), 6, "kernel", f"NVRM: GPU {address}: GPU Ready"))
    entries.append(JournalEntry(at(8), 6, "kernel", f"NVRM: All {expected} GPUs initialized successfully"))
    entries.extend(
        JournalEntry(at(9), 6, "kernel", f"mlx5_core {hca.pci_address}: firmware version: {hca.firmware}")
        for hca in node.hcas
    )
    entries.extend(
        [
            JournalEntry(at(12), 6, "systemd[1]", "Started NVIDIA Persistence Daemon.", "nvidia-persistenced"),
            JournalEntry(at(13), 6, "systemd[1]", "Starting NVIDIA fabric manager service...", "nvidia-fabricmanager"),
            JournalEntry(
                at(15),
                6,
                "nv-fabricmanager[2101]",
                "Successfully configured all the available NVSwitches to route GPU NVLink traffic.",
                "nvidia-fabricmanager",
            ),
            JournalEntry(at(15), 6, "systemd[1]", "Started NVIDIA fabric manager service.", "nvidia-fabricmanager"),
            JournalEntry(at(18), 6, "slurmd[2315]", f"slurmd version {SLURM_VERSION} started", "slurmd"),
            JournalEntry(at(18), 6, "slurmd[2315]", f"gres/gpu count: {len(node.gpus)}", "slurmd"),
            JournalEntry(
                at(19),
                6,
                "slurmd[2315]",
                f"slurmd started on {node.hostname}: CPUs={node.logical_cores} Boards=1 "
                f"Sockets={node.cpu_count} RealMemory={node.ram_total * 1000}",
                "slurmd",
            ),
            JournalEntry(at(20), 6, "systemd[1]", "Reached target Multi-User System."),
        ]
    )

    fault_time = boot + timedelta(hours=2)
    for gpu in node.gpus:
        pci = gpu.pci_address
        for error in gpu.xid_errors:
            severity = xid_severity(error)
            priority = 3 if severity == "Critical" else 4 if severity == "Warning" else 6
            channel = (error.code * 0x1000 + gpu.id * 0x10 + 1) & 0xFFFFFFFF
            pid = _xid_pid(gpu, error.code, error.pid)
            entries.append(
                JournalEntry(
                    error.timestamp,
                    priority,
                    "kernel",
                    f"NVRM: Xid (PCI:{pci}): {error.code}, pid={pid}, name={error.process_name}, "
                    f"Ch {channel:08x}, {xid_description(error)}",
                )
            )
            entries.extend(
                JournalEntry(error.timestamp, priority, "kernel", line.format(pci=pci))
                for line in XID_FOLLOW_UPS.get(error.code, ())
            )
        ecc = gpu.ecc_errors
        if ecc.worst_double_bit > 0:
            entries.append(
                JournalEntry(
                    fault_time,
                    3,
                    "kernel",
                    f"NVRM: GPU {pci}: DOUBLE-BIT ECC error detected (count: {ecc.worst_double_bit})",
                )
            )
        if ecc.worst_single_bit > 0:
            priority = 4 if ecc_status(ecc) != "OK" else 5
            entries.append(
                JournalEntry(
                    fault_time,
                    priority,
                    "kernel",
                    f"NVRM: GPU {pci}: single-bit ECC error corrected (count: {ecc.worst_single_bit})",
                )
            )
        thermal = temperature_status(gpu.temperature)
        if thermal != "OK":
            entries.append(
                JournalEntry(
                    fault_time,
                    3 if thermal == "Critical" else 4,
                    "kernel",
                    f"NVRM: GPU {pci}: temperature ({gpu.temperature:g}C) exceeds slowdown threshold, "
                    "clocks throttled",
                )
            )
        entries.extend(
            JournalEntry(fault_time, 3, "kernel", f"NVRM: NVLink: link {link.link_id} on GPU {pci} is down")
            for link in gpu.nvlinks
            if link.status == "Down"
        )
    for hca in node.hcas:
        for port in hca.ports:
            if ib_port_status(port) == "Critical":
                entries.append(
                    JournalEntry(
                        fault_time,
                        4,
                        "kernel",
                        f"mlx5_core {hca.pci_address}: mlx5_port_module_event: Port {port.port_number} link down",
                    )
                )
    for service in SERVICES:
        active = is_active(node, service)
        if active != service.active:
            verb = "Started" if active else "Stopped"
            entries.append(JournalEntry(fault_time, 6, "systemd[1]", f"{verb} {service.description}.", service.name))
    return sorted(entries, key=lambda entry: entry.timestamp)


def _device_id(node: DGXNode) -> str:
    try:
        return system_spec(node.system_type).pci_device_id
    except ConfigurationError:
        return "2330"


def _parse_priority(value: str) -> int | None:
    if value.isdigit():
        level = int(value)
        return level if 0 <= level <= 7 else None
    return PRIORITIES.get(value.split("..")[-1].lower())


class PciToolsSimulator(BaseSimulator):
    """lspci and journalctl, the two tools used to trace a GPU fault to the PCI bus."""

    name = "pci-tools"
    version = LSPCI_VERSION
    description = "PCI device listing and system journal"
    commands = ("lspci", "journalctl")

    def execute(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        if cmd.base_command == "lspci":
            return self._lspci(cmd, ctx)
        if cmd.base_command == "journalctl":
            return self._journalctl(cmd, ctx)
        return CommandResult.error(f"Unknown PCI tool: {cmd.base_command}")

    def _lspci(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        checked = self.validate(_LSPCI_FLAGS, cmd)
        if isinstance(checked, CommandResult):
            return checked
        cmd = checked
        if cmd.has_flag("help"):
            return self.help_result("lspci")
        if cmd.has_flag("version"):
            return CommandResult.ok(f"lspci version {LSPCI_VERSION}")

        node = self.current_node(ctx)
        if node is None:
            return CommandResult.ok("No PCI devices found")

        devices = pci_devices(node)
        if vendor := cmd.flag_str("d"):
            wanted_vendor, _, wanted_device = vendor.lower().partition(":")
            devices = [
                device
                for device in devices
                if (not wanted_vendor or device.vendor_id == wanted_vendor)
                and (not wanted_device or device.device_id == wanted_device)
            ]
        if slot := cmd.flag_str("s"):
            devices = [device for device in devices if device.address.endswith(slot.lower())]
        if not devices:
            return CommandResult.ok("")

        verbosity = 3 if cmd.has_flag("vvv") else 2 if cmd.has_flag("vv") else 1 if cmd.has_flag("v") else 0
        numeric = "nn" if cmd.has_flag("nn") else "n" if cmd.has_flag("n") else ""
        return CommandResult.ok(render_lspci(devices, verbosity=verbosity, numeric=numeric, kernel=cmd.has_flag("k")))

    def _journalctl(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        checked = self.validate(_JOURNAL_FLAGS, cmd)
        if isinstance(checked, CommandResult):
            return checked
        cmd = checked
        if cmd.has_flag("help"):
            return self.help_result("journalctl")
        if cmd.has_flag("version"):
            return CommandResult.ok(JOURNALCTL_VERSION)

        node = self.current_node(ctx)
        if node is None:
            return CommandResult.error(f"No node found: {ctx.current_node}")

        entries = journal_entries(node, ctx.cluster)
        if cmd.has_flag("dmesg"):
            entries = [entry for entry in entries if entry.is_kernel]
        if unit := cmd.flag_str("unit"):
            unit = unit.removesuffix(".service")
            entries = [entry for entry in entries if entry.unit == unit]
        if priority := cmd.flag_str("priority"):
            level = _parse_priority(priority)
            if level is None:
                return CommandResult.error(f"Failed to parse priority value: {priority}")
            entries = [entry for entry in entries if entry.priority <= level]
        if pattern := cmd.flag_str("grep"):
            entries = [entry for entry in entries if pattern.lower() in entry.message.lower()]
        if lines := cmd.flag_str("lines"):
            if not lines.isdigit():
                return CommandResult.error(f"Failed to parse lines '{lines}'")
            entries = entries[-int(lines) :] if int(lines) else []
        if cmd.has_flag("reverse"):
            entries = list(reversed(entries))

        cluster = ctx.cluster
        boot = cluster.boot_time if cluster is not None else datetime(2024, 6, 15, 8, 0, 0)
        end = max([report_clock(ctx), *(entry.timestamp for entry in entries)])
        header = f"-- Logs begin at {boot:%a %Y-%m-%d %H:%M:%S} UTC, end at {end:%a %Y-%m-%d %H:%M:%S} UTC. --"
        if not entries:
            return CommandResult.ok(f"{header}\n-- No entries --")
        body = "\n".join(entry.render(node.hostname) for entry in entries)
        return CommandResult.ok(f"{header}\n{body}")
