"""nvidia-bug-report.sh: one report aggregating every other tool's view of a node."""

from __future__ import annotations

from superpod_sim.cluster.health import (
    SINGLE_BIT_WARNING,
    ecc_status,
    nvlink_status,
    pcie_status,
    power_near_limit,
    temperature_status,
)
from superpod_sim.cluster.models import GPU, DGXNode
from superpod_sim.cluster.xid import lookup_xid, xid_description, xid_severity
from superpod_sim.core.flags import FlagSchema, FlagSpec
from superpod_sim.core.formatting import key_value_block, section
from superpod_sim.core.types import CommandContext, CommandResult, ParsedCommand
from superpod_sim.simulators.base import BaseSimulator, has_fallen_off_bus, report_clock
from superpod_sim.simulators.pci_tools import pci_devices, render_lspci

SCRIPT_VERSION = "535.104.05"
DEFAULT_OUTPUT = "/tmp/nvidia-bug-report.log.gz"

COLLECTION_STEPS = (
    "nvidia-smi -q",
    "nvidia-smi topo -m",
    "nvidia-smi nvlink -s",
    "dmesg",
    "journalctl -b",
    "lspci -tv",
    "dcgmi discovery -l",
    "ipmitool sel elist",
    "nvsm show health",
    "ibstat",
    "modinfo nvidia",
    "/proc/driver/nvidia",
)
EXTRA_STEPS = ("lspci verbose", "dmidecode", "kernel modules", "boot parameters")
# Steps that talk to the GPU and can hang when it is wedged.
UNSAFE_STEPS = frozenset({"nvidia-smi -q", "nvidia-smi nvlink -s", "dcgmi discovery -l"})

_KERNEL_MODULES = ("nvidia", "nvidia_uvm", "nvidia_modeset", "nvidia_drm", "nvidia_peermem", "mlx5_core", "mlx5_ib")

_FLAGS = FlagSchema(
    "nvidia-bug-report.sh",
    [
        FlagSpec("output-file", aliases=("o",), takes_value=True),
        FlagSpec("verbose", aliases=("v",)),
        FlagSpec("no-compress"),
        FlagSpec("extra-system-data"),
        FlagSpec("safe-mode"),
        FlagSpec("help", aliases=("h",)),
        FlagSpec("version"),
    ],
)


def recommendations(node: DGXNode) -> list[str]:
    """Actions derived from the same thresholds every health view uses."""
    advice: list[str] = []
    for gpu in node.gpus:
        before = len(advice)
        first_by_code = {error.code: error for error in reversed(gpu.xid_errors)}
        for code in dict.fromkeys(error.code for error in gpu.xid_errors):
            error = first_by_code[code]
            if xid_severity(error) == "Informational":
                continue
            info = lookup_xid(code)
            action = info.action if info is not None else "Collect nvidia-bug-report.sh and contact NVIDIA support"
            advice.append(f"GPU {gpu.id}: XID {code} ({xid_description(error)}) - {action}")
        thermal = temperature_status(gpu.temperature)
        if thermal == "Critical":
            advice.append(f"GPU {gpu.id}: temperature {gpu.temperature}C is critical - check cooling immediately")
        elif thermal == "Warning":
            advice.append(f"GPU {gpu.id}: temperature {gpu.temperature}C is elevated - verify airflow and fans")
        if gpu.ecc_errors.worst_double_bit > 0:
            advice.append(
                f"GPU {gpu.id}: {gpu.ecc_errors.worst_double_bit} double-bit ECC errors"
                " - drain the node and reset the GPU"
            )
        elif ecc_status(gpu.ecc_errors) == "Warning":
            advice.append(f"GPU {gpu.id}: single-bit ECC errors above {SINGLE_BIT_WARNING} - schedule a GPU reset")
        down = [link.link_id for link in gpu.nvlinks if nvlink_status(link) == "Critical"]
        if down:
            links = ", ".join(str(link_id) for link_id in down)
            advice.append(f"GPU {gpu.id}: NVLink {links} down - check NVSwitch connectivity and reseat")
        if pcie_status(gpu) != "OK" and not has_fallen_off_bus(gpu):
            advice.append(
                f"GPU {gpu.id}: PCIe link degraded (Gen speed {gpu.pcie_link_speed}GT/s, width x{gpu.pcie_link_width})"
                " - reseat the GPU baseboard"
            )
        if power_near_limit(gpu):
            advice.append(
                f"GPU {gpu.id} is near power limit ({gpu.power_draw:.1f} W / {gpu.power_limit:.1f} W)"
                " - check workload power profile and PSU capacity"
            )
        # A reported status with no fault explaining it still needs a diagnostic.
        if gpu.health_status != "OK" and len(advice) == before:
            advice.append(
                f"GPU {gpu.id} is in a non-OK state ({gpu.health_status}) - run 'dcgmi diag -r 3' for a full diagnostic"
            )
    return advice


def _gpu_details(gpu: GPU) -> str:
    status = "Unreachable (fallen off the bus)" if has_fallen_off_bus(gpu) else gpu.health_status
    pairs = [
        ("UUID", gpu.uuid),
        ("PCI Bus", gpu.pci_address),
        ("Name", gpu.name),
        ("VBIOS", gpu.vbios_version),
        ("Temperature", f"{gpu.temperature} C"),
        ("Power", f"{gpu.power_draw:.1f} W / {gpu.power_limit:.1f} W"),
        ("Memory", f"{gpu.memory_used} MiB / {gpu.memory_total} MiB"),
        ("PCIe Link", f"Gen speed {gpu.pcie_link_speed}GT/s, x{gpu.pcie_link_width}"),
        ("Health", status),
    ]
    return f"GPU {gpu.id}:\n" + key_value_block(pairs, indent=2)


def _xid_history(node: DGXNode) -> list[str]:
    lines = []
    for gpu in node.gpus:
        for error in sorted(gpu.xid_errors, key=lambda item: item.timestamp):
            lines.append(
                f"  {error.timestamp:%Y-%m-%d %H:%M:%S}  GPU {gpu.id} ({gpu.pci_address})  "
                f"XID {error.code}: {xid_description(error)} [{xid_severity(error)}]"
            )
    return lines


def _report_size(node: DGXNode, *, extra: bool) -> int:
    """Deterministic compressed size in KB."""
    faults = sum(len(gpu.xid_errors) for gpu in node.gpus)
    return 2048 + 96 * len(node.gpus) + 64 * faults + (512 if extra else 0)


class NvidiaBugReportSimulator(BaseSimulator):
    name = "nvidia-bug-report.sh"
    version = SCRIPT_VERSION
    description = "NVIDIA bug report collector"
    commands = ("nvidia-bug-report.sh",)

    def execute(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        checked = self.validate(_FLAGS, cmd)
        if isinstance(checked, CommandResult):
            return checked
        cmd = checked
        if cmd.has_flag("help"):
            return self.help_result()
        if cmd.has_flag("version"):
            return CommandResult.ok(f"nvidia-bug-report.sh Version: {SCRIPT_VERSION}")

        node = self.current_node(ctx)
        if node is None:
            return CommandResult.error(f"ERROR: Unable to collect data: node '{ctx.current_node}' not found")

        extra = cmd.has_flag("extra-system-data")
        compress = not cmd.has_flag("no-compress")
        output_file = cmd.flag_str("output-file") or DEFAULT_OUTPUT
        if not compress:
            output_file = output_file.removesuffix(".gz")

        steps = list(COLLECTION_STEPS)
        if cmd.has_flag("safe-mode"):
            steps = [step for step in steps if step not in UNSAFE_STEPS]
        if extra:
            steps.extend(EXTRA_STEPS)

        lines = [
            "NVIDIA Bug Report Generator",
            f"nvidia-bug-report.sh Version: {SCRIPT_VERSION}",
            f"Running on {node.hostname} at {report_clock(ctx):%a %b %d %H:%M:%S UTC %Y}",
            "",
        ]
        if cmd.has_flag("safe-mode"):
            lines += ["Running in safe mode: skipping steps that query the GPU directly.", ""]
        lines.append("Collecting diagnostic data:")
        if cmd.has_flag("verbose"):
            lines += [f"  [{idx}/{len(steps)}] {step} ... done" for idx, step in enumerate(steps, start=1)]
        else:
            lines += [f"  - {step}" for step in steps]
        lines.append("")

        lines += [section("System Information"), self._system_info(node), ""]
        lines += [section("GPU Summary"), self._gpu_summary(node), ""]
        lines += [section("Driver Information"), self._driver_info(node), ""]

        lines.append(section("XID Error History"))
        lines += _xid_history(node) or ["  No XID errors recorded"]
        lines.append("")

        lines += [section("NVLink Summary"), self._nvlink_summary(node), ""]
        lines += [section("ECC Memory Status"), self._ecc_summary(node), ""]
        lines.append(section("GPU Details"))
        lines += [_gpu_details(gpu) for gpu in node.gpus]
        lines.append("")

        if extra:
            lines += self._extra_sections(node)

        lines.append(section("Recommendations"))
        advice = recommendations(node)
        lines += [f"  * {item}" for item in advice] or ["  No issues detected. System appears healthy."]
        lines.append("")

        size_kb = _report_size(node, extra=extra)
        lines.append(f"nvidia-bug-report.sh completed successfully. Output written to {output_file}")
        if compress:
            lines.append(f"Compressed size: {size_kb} KB")
        else:
            lines.append(f"Uncompressed size: {size_kb * 6 / 1024:.1f} MB")
        return CommandResult.ok("\n".join(lines))

    @staticmethod
    def _system_info(node: DGXNode) -> str:
        pairs = [
            ("Hostname", node.hostname),
            ("System Type", node.system_type),
            ("OS", node.os_version),
            ("Kernel", node.kernel_version),
            ("CPU", f"{node.cpu_count}x {node.cpu_model}"),
            ("Memory", f"{node.ram_total} GB ({node.ram_used} GB used)"),
            ("BMC", f"{node.bmc.ip_address} (firmware {node.bmc.firmware_version})"),
        ]
        return key_value_block(pairs, indent=2)

    @staticmethod
    def _gpu_summary(node: DGXNode) -> str:
        healthy = sum(1 for gpu in node.gpus if gpu.health_status == "OK")
        lost = sum(1 for gpu in node.gpus if has_fallen_off_bus(gpu))
        pairs = [
            ("Total GPUs", len(node.gpus)),
            ("Model", node.gpus[0].name if node.gpus else "N/A"),
            ("Healthy", healthy),
            ("Degraded", len(node.gpus) - healthy),
            ("Not visible on PCIe", lost),
        ]
        return key_value_block(pairs, indent=2)

    @staticmethod
    def _driver_info(node: DGXNode) -> str:
        pairs = [
            ("Driver Version", node.nvidia_driver_version),
            ("CUDA Version", node.cuda_version),
            ("Bug Report Script", SCRIPT_VERSION),
            ("Persistence Mode", "Enabled" if all(gpu.persistence_mode for gpu in node.gpus) else "Disabled"),
        ]
        return key_value_block(pairs, indent=2)

    @staticmethod
    def _nvlink_summary(node: DGXNode) -> str:
        links = [link for gpu in node.gpus for link in gpu.nvlinks]
        pairs: list[tuple[str, object]] = [("Total Links", len(links))]
        for status in ("Active", "Inactive", "Down"):
            pairs.append((status, sum(1 for link in links if link.status == status)))
        errors = sum(link.replay_errors + link.recovery_errors + link.crc_errors for link in links)
        pairs.append(("Link Errors", errors))
        return key_value_block(pairs, indent=2)

    @staticmethod
    def _ecc_summary(node: DGXNode) -> str:
        totals = [
            ("Single-Bit Errors", sum(gpu.ecc_errors.worst_single_bit for gpu in node.gpus)),
            ("Double-Bit Errors", sum(gpu.ecc_errors.worst_double_bit for gpu in node.gpus)),
        ]
        lines = [key_value_block(totals, indent=2)]
        lines += [
            f"  GPU {gpu.id}: {ecc_status(gpu.ecc_errors)} "
            f"(SBE {gpu.ecc_errors.worst_single_bit}, DBE {gpu.ecc_errors.worst_double_bit})"
            for gpu in node.gpus
            if ecc_status(gpu.ecc_errors) != "OK"
        ]
        return "\n".join(lines)

    @staticmethod
    def _extra_sections(node: DGXNode) -> list[str]:
        devices = [device for device in pci_devices(node) if device.vendor_id in ("10de", "15b3")]
        return [
            section("lspci verbose"),
            render_lspci(devices, verbosity=1, numeric="", kernel=False),
            "",
            section("dmidecode"),
            key_value_block(
                [
                    ("Manufacturer", "NVIDIA"),
                    ("Product Name", node.system_type),
                    ("Processor", node.cpu_model),
                    ("Sockets", node.cpu_count),
                    ("Installed Memory", f"{node.ram_total} GB"),
                ],
                indent=2,
            ),
            "",
            section("kernel modules"),
            "\n".join(f"  {module}" for module in _KERNEL_MODULES),
            "",
            section("boot parameters"),
            f"  BOOT_IMAGE=/vmlinuz-{node.kernel_version} root=/dev/md0 ro pci=realloc=off iommu=pt",
            "",
        ]
