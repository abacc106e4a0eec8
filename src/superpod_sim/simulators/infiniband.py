"""InfiniBand diagnostics (infiniband-diags and rdma-core utilities)."""

from __future__ import annotations

from collections.abc import Callable

from superpod_sim.cluster.health import ib_port_status
from superpod_sim.cluster.models import DGXNode, InfiniBandHCA, InfiniBandPort
from superpod_sim.core.flags import FlagSchema, FlagSpec
from superpod_sim.core.formatting import RED, YELLOW, colorize
from superpod_sim.core.types import CommandContext, CommandResult, ParsedCommand
from superpod_sim.simulators.base import BaseSimulator

IB_DIAGS_VERSION = "5.9-0"
NO_HCA = "ibpanic: No InfiniBand HCAs found"
CAPABILITY_MASK = "0xa651e848"
_DOT_WIDTH = 33

_STANDARDS = ((800, "XDR"), (400, "NDR"), (200, "HDR"), (100, "EDR"), (56, "FDR"))


def ib_standard(rate: int) -> str:
    """Name of the InfiniBand generation running at ``rate`` Gb/s."""
    for threshold, name in _STANDARDS:
        if rate >= threshold:
            return name
    return "QDR"


def _dotted(key: str, value: object) -> str:
    label = f"{key}:"
    return f"{label.ljust(_DOT_WIDTH, '.')}{value}"


def _ports(node: DGXNode) -> list[tuple[InfiniBandHCA, InfiniBandPort]]:
    return [(hca, port) for hca in node.hcas for port in hca.ports]


def _leaf_switch(hca: InfiniBandHCA) -> str:
    return f"MF0;leaf-{hca.id // 4 + 1:02d}:MQM9700/U1"


def _schema(tool: str, *extra: FlagSpec) -> FlagSchema:
    return FlagSchema(tool, [*extra, FlagSpec("help", aliases=("h",)), FlagSpec("version", aliases=("V",))])


_IBSTAT_FLAGS = _schema(
    "ibstat",
    FlagSpec("list_of_cas", aliases=("l",)),
    FlagSpec("short", aliases=("s",)),
    FlagSpec("port_list", aliases=("p",)),
)
_IBPORTSTATE_FLAGS = _schema("ibportstate", FlagSpec("C", takes_value=True), FlagSpec("P", takes_value=True))
_IBPORTERRORS_FLAGS = _schema("ibporterrors", FlagSpec("Ca", aliases=("C",), takes_value=True))
_IBLINKINFO_FLAGS = _schema("iblinkinfo", FlagSpec("verbose", aliases=("v",)), FlagSpec("line", aliases=("l",)))
_IBDEV2NETDEV_FLAGS = _schema("ibdev2netdev", FlagSpec("v"))
_PERFQUERY_FLAGS = _schema(
    "perfquery",
    FlagSpec("extended", aliases=("x",)),
    FlagSpec("reset", aliases=("r",)),
    FlagSpec("C", takes_value=True),
)


class InfiniBandSimulator(BaseSimulator):
    """ibstat and friends, reading HCA ports from the current node."""

    name = "infiniband-tools"
    version = IB_DIAGS_VERSION
    description = "InfiniBand diagnostic tools"
    commands = ("ibstat", "ibportstate", "ibporterrors", "iblinkinfo", "ibdev2netdev", "perfquery")

    def execute(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        tools: dict[str, tuple[FlagSchema, Callable[[ParsedCommand, DGXNode], CommandResult]]] = {
            "ibstat": (_IBSTAT_FLAGS, self._ibstat),
            "ibportstate": (_IBPORTSTATE_FLAGS, self._ibportstate),
            "ibporterrors": (_IBPORTERRORS_FLAGS, self._ibporterrors),
            "iblinkinfo": (_IBLINKINFO_FLAGS, self._iblinkinfo),
            "ibdev2netdev": (_IBDEV2NETDEV_FLAGS, self._ibdev2netdev),
            "perfquery": (_PERFQUERY_FLAGS, self._perfquery),
        }
        if cmd.base_command not in tools:
            return CommandResult.error(f"Unknown InfiniBand tool: {cmd.base_command}")
        schema, handler = tools[cmd.base_command]
        checked = self.validate(schema, cmd)
        if isinstance(checked, CommandResult):
            return checked
        cmd = checked
        if cmd.has_flag("help"):
            return self.help_result(cmd.base_command)
        if cmd.has_flag("version"):
            return CommandResult.ok(f"{cmd.base_command} {IB_DIAGS_VERSION}")

        node = self.current_node(ctx)
        if node is None or not node.hcas:
            return CommandResult.error(NO_HCA)
        return handler(cmd, node)

    @staticmethod
    def _ibstat(cmd: ParsedCommand, node: DGXNode) -> CommandResult:
        if cmd.has_flag("list_of_cas"):
            return CommandResult.ok("\n".join(hca.device_name for hca in node.hcas))

        hcas = node.hcas
        port_filter: int | None = None
        if cmd.words:
            wanted = cmd.words[0]
            hcas = [hca for hca in node.hcas if hca.device_name == wanted]
            if not hcas:
                return CommandResult.error(f"ibstat: iberror: failed: '{wanted}' IB device can't be found")
            if len(cmd.words) > 1:
                if not cmd.words[1].isdigit():
                    return CommandResult.error(f"ibstat: iberror: failed: bad port number '{cmd.words[1]}'")
                port_filter = int(cmd.words[1])

        if cmd.has_flag("port_list"):
            return CommandResult.ok("\n".join(port.port_guid for hca in hcas for port in hca.ports))

        blocks = []
        for hca in hcas:
            lines = [
                f"CA '{hca.device_name}'",
                f"\tCA type: {hca.chip}",
                f"\tNumber of ports: {len(hca.ports)}",
                f"\tFirmware version: {hca.firmware}",
                "\tHardware version: 0",
                f"\tNode GUID: {hca.node_guid}",
                f"\tSystem image GUID: {hca.sys_image_guid}",
            ]
            for port in hca.ports:
                if port_filter is not None and port.port_number != port_filter:
                    continue
                if cmd.has_flag("short"):
                    lines.append(f"\tPort {port.port_number}: {port.state} {port.physical_state} {port.rate}")
                    continue
                lines.extend(
                    [
                        f"\tPort {port.port_number}:",
                        f"\t\tState: {port.state}",
                        f"\t\tPhysical state: {port.physical_state}",
                        f"\t\tRate: {port.rate}",
                        f"\t\tBase lid: {port.lid}",
                        "\t\tLMC: 0",
                        f"\t\tSM lid: {port.sm_lid}",
                        f"\t\tCapability mask: {CAPABILITY_MASK}",
                        f"\t\tPort GUID: {port.port_guid}",
                        f"\t\tLink layer: {port.link_layer}",
                    ]
                )
            blocks.append("\n".join(lines))
        return CommandResult.ok("\n".join(blocks))

    @staticmethod
    def _ibportstate(cmd: ParsedCommand, node: DGXNode) -> CommandResult:
        ports = _ports(node)
        hca, port = ports[0]
        if cmd.words:
            lid_text = cmd.words[0]
            port_text = cmd.words[1] if len(cmd.words) > 1 else "1"
            if not lid_text.isdigit() or not port_text.isdigit():
                return CommandResult.error("Usage: ibportstate [options] <dest dr_path|lid|guid> <portnum> [<op>]")
            match = [
                (item_hca, item)
                for item_hca, item in ports
                if item.lid == int(lid_text) and item.port_number == int(port_text)
            ]
            if not match:
                return CommandResult.error(
                    f"ibwarn: [{lid_text}] smp_query_via: query failed: port info query failed (lid {lid_text})"
                )
            hca, port = match[0]

        width = "4X" if port.physical_state == "LinkUp" else "1X"
        lines = [
            "CA PortInfo:",
            f"# Port info: Lid {port.lid} port {port.port_number}",
            _dotted("LinkState", port.state),
            _dotted("PhysLinkState", port.physical_state),
            _dotted("Lid", port.lid),
            _dotted("SMLid", port.sm_lid),
            _dotted("LMC", 0),
            _dotted("LinkWidthSupported", "1X or 4X"),
            _dotted("LinkWidthEnabled", "1X or 4X"),
            _dotted("LinkWidthActive", width),
            _dotted("LinkSpeedActive", f"{port.rate // 4} Gbps ({ib_standard(port.rate)})"),
            _dotted("CA", hca.device_name),
        ]
        return CommandResult.ok("\n".join(lines))

    @staticmethod
    def _ibporterrors(cmd: ParsedCommand, node: DGXNode) -> CommandResult:
        wanted = cmd.flag_str("Ca")
        ports = [(hca, port) for hca, port in _ports(node) if wanted is None or hca.device_name == wanted]
        if not ports:
            return CommandResult.error(f"ibporterrors: iberror: failed: '{wanted}' IB device can't be found")

        lines = ["Errors for:"]
        for hca, port in ports:
            lines.extend(
                [
                    f"  {hca.device_name} port {port.port_number} (lid {port.lid}):",
                    f"    SymbolErrors:            {port.symbol_errors}",
                    f"    LinkErrorRecovery:       {port.link_error_recovery}",
                    f"    LinkDowned:              {port.link_downed}",
                    f"    PortRcvErrors:           {port.port_rcv_errors}",
                    f"    PortXmitDiscards:        {port.port_xmit_discards}",
                ]
            )
            if port.symbol_errors > 0:
                lines.append("    " + colorize("Warning: Symbol errors detected - check cable quality", YELLOW))
            if port.link_downed > 0:
                lines.append("    " + colorize(f"Critical: Link has gone down {port.link_downed} times", RED))
        return CommandResult.ok("\n".join(lines))

    @staticmethod
    def _iblinkinfo(cmd: ParsedCommand, node: DGXNode) -> CommandResult:
        lines = ["InfiniBand Link Information:", ""]
        for hca in node.hcas:
            lines.append(f"CA: {node.hostname} {hca.device_name}:")
            for port in hca.ports:
                if port.state == "Active":
                    link = f"==( 4X {port.rate / 4:>10.2f} Gbps {port.state:>6}/{port.physical_state:>8})==>"
                    remote = f"{100 + hca.id // 4:>6} {hca.id % 4 * 2 + 1:>4}[  ] \"{_leaf_switch(hca)}\" ( )"
                else:
                    link = f"==(                 {port.state:>6}/{port.physical_state:>8})==>"
                    remote = '            [  ] "" ( )'
                lines.append(f"      {port.port_guid} {port.lid:>5} {port.port_number:>4}[  ] {link} {remote}")
                lines.append(
                    f"           rate {port.rate} Gb/s ({ib_standard(port.rate)}) {port.link_layer}"
                    f" status {ib_port_status(port)}"
                )
                if cmd.has_flag("verbose"):
                    lines.extend(
                        [
                            "         Link errors:",
                            f"           Symbol errors:      {port.symbol_errors}",
                            f"           Link downed:        {port.link_downed}",
                            f"           Receive errors:     {port.port_rcv_errors}",
                        ]
                    )
        return CommandResult.ok("\n".join(lines))

    @staticmethod
    def _ibdev2netdev(cmd: ParsedCommand, node: DGXNode) -> CommandResult:
        lines = []
        for hca, port in _ports(node):
            link = "Up" if port.state == "Active" else "Down"
            if cmd.has_flag("v"):
                lines.append(
                    f"{hca.pci_address} {hca.device_name} ({hca.chip} - {hca.ca_type}) fw {hca.firmware} "
                    f"port {port.port_number} ({port.state.upper()}) ==> {hca.net_device} ({link})"
                )
            else:
                lines.append(f"{hca.device_name} port {port.port_number} ==> {hca.net_device} ({link})")
        return CommandResult.ok("\n".join(lines))

    @staticmethod
    def _perfquery(cmd: ParsedCommand, node: DGXNode) -> CommandResult:
        ports = _ports(node)
        hca, port = ports[0]
        if cmd.words:
            if not cmd.words[0].isdigit():
                return CommandResult.error(f"perfquery: iberror: failed: can't resolve destination port {cmd.words[0]}")
            match = [(item_hca, item) for item_hca, item in ports if item.lid == int(cmd.words[0])]
            if not match:
                return CommandResult.error(f"ibwarn: [{cmd.words[0]}] perfquery: query failed (lid {cmd.words[0]})")
            hca, port = match[0]

        # Fixed per-lid traffic so repeated queries agree.
        seed = port.lid * 7919
        xmit_data = 500_000_000 + seed % 500_000_000
        rcv_data = 450_000_000 + seed * 3 % 500_000_000
        xmit_pkts = 5_000_000 + seed % 5_000_000
        rcv_pkts = 4_800_000 + seed * 3 % 5_000_000
        counters: list[tuple[str, object]] = [
            ("PortSelect", port.port_number),
            ("CounterSelect", "0x0000"),
            ("SymbolErrorCounter", port.symbol_errors),
            ("LinkErrorRecoveryCounter", port.link_error_recovery),
            ("LinkDownedCounter", port.link_downed),
            ("PortRcvErrors", port.port_rcv_errors),
            ("PortRcvRemotePhysicalErrors", 0),
            ("PortRcvSwitchRelayErrors", 0),
            ("PortXmitDiscards", port.port_xmit_discards),
            ("PortXmitConstraintErrors", 0),
            ("PortRcvConstraintErrors", 0),
            ("LocalLinkIntegrityErrors", 0),
            ("ExcessiveBufferOverrunErrors", 0),
            ("VL15Dropped", 0),
            ("PortXmitData", xmit_data),
            ("PortRcvData", rcv_data),
            ("PortXmitPkts", xmit_pkts),
            ("PortRcvPkts", rcv_pkts),
        ]
        if cmd.has_flag("extended"):
            counters += [
                ("PortUnicastXmitPkts", xmit_pkts),
                ("PortUnicastRcvPkts", rcv_pkts),
                ("PortMulticastXmitPkts", 0),
                ("PortMulticastRcvPkts", 0),
            ]
        header = f"# Port counters: Lid {port.lid} port {port.port_number} ({hca.device_name})"
        body = "\n".join(_dotted(key, value) for key, value in counters)
        return CommandResult.ok(f"{header}\n{body}")
