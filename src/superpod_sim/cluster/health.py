"""Fault thresholds shared by every health-reporting tool."""

from __future__ import annotations

from collections.abc import Iterable

from superpod_sim.cluster.models import GPU, DGXNode, ECCErrors, HealthStatus, InfiniBandPort, NVLinkConnection
from superpod_sim.cluster.xid import xid_severity

TEMP_WARNING_C = 80
TEMP_CRITICAL_C = 90
SINGLE_BIT_WARNING = 100
POWER_NEAR_LIMIT_RATIO = 0.95

_RANK: dict[HealthStatus, int] = {"OK": 0, "Warning": 1, "Critical": 2}


def worst(statuses: Iterable[HealthStatus]) -> HealthStatus:
    result: HealthStatus = "OK"
    for status in statuses:
        if _RANK[status] > _RANK[result]:
            result = status
    return result


def temperature_status(temperature: float) -> HealthStatus:
    if temperature > TEMP_CRITICAL_C:
        return "Critical"
    if temperature >= TEMP_WARNING_C:
        return "Warning"
    return "OK"


def ecc_status(ecc: ECCErrors) -> HealthStatus:
    if ecc.worst_double_bit > 0:
        return "Critical"
    if ecc.worst_single_bit > SINGLE_BIT_WARNING:
        return "Warning"
    return "OK"


def nvlink_status(link: NVLinkConnection) -> HealthStatus:
    if link.status == "Down":
        return "Critical"
    if link.status == "Inactive":
        return "Warning"
    return "OK"


def pcie_status(gpu: GPU) -> HealthStatus:
    if gpu.pcie_link_width < 16 or gpu.pcie_link_speed < 16:
        return "Warning"
    return "OK"


def xid_status(gpu: GPU) -> HealthStatus:
    statuses: list[HealthStatus] = []
    for error in gpu.xid_errors:
        severity = xid_severity(error)
        statuses.append("OK" if severity == "Informational" else severity)
    return worst(statuses)


def ib_port_status(port: InfiniBandPort) -> HealthStatus:
    if port.state == "Down" or port.physical_state == "Disabled":
        return "Critical"
    if port.state != "Active" or port.error_total > 0:
        return "Warning"
    return "OK"


def power_near_limit(gpu: GPU) -> bool:
    return gpu.power_limit > 0 and gpu.power_draw >= gpu.power_limit * POWER_NEAR_LIMIT_RATIO


def derive_gpu_health(gpu: GPU) -> HealthStatus:
    """Return the health implied by a GPU's faults alone."""
    return worst(
        [
            temperature_status(gpu.temperature),
            ecc_status(gpu.ecc_errors),
            xid_status(gpu),
            *(nvlink_status(link) for link in gpu.nvlinks),
        ]
    )


def derive_node_health(node: DGXNode) -> HealthStatus:
    statuses: list[HealthStatus] = [gpu.health_status for gpu in node.gpus]
    for hca in node.hcas:
        # A dead IB port degrades the node but does not take it down.
        statuses.extend("Warning" if ib_port_status(port) != "OK" else "OK" for port in hca.ports)
    return worst(statuses)
