"""Builds the default virtual SuperPOD."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from superpod_sim.cluster.models import (
    BMC,
    GPU,
    BMCSensor,
    ClusterConfig,
    DGXNode,
    InfiniBandHCA,
    InfiniBandPort,
    NVLinkConnection,
    SlurmPartition,
)
from superpod_sim.config import Settings
from superpod_sim.errors import ConfigurationError


@dataclass(frozen=True)
class SystemSpec:
    """Static hardware description of one DGX model."""

    gpu_name: str
    gpu_family: str
    pci_device_id: str
    pci_device_name: str
    gpu_count: int
    memory_total: int
    power_limit: float
    nvlinks_per_gpu: int
    nvswitch_count: int
    hca_chip: str
    hca_type: str
    hca_rate: int


SYSTEM_SPECS: dict[str, SystemSpec] = {
    "DGX-H100": SystemSpec(
        "NVIDIA H100 80GB HBM3", "h100", "2330", "GH100 [H100 SXM5 80GB]", 8, 81559, 700.0, 18, 4,
        "MT4129", "ConnectX-7", 400,
    ),
    "DGX-H200": SystemSpec(
        "NVIDIA H200", "h200", "2335", "GH100 [H200 SXM 141GB]", 8, 143771, 700.0, 18, 4,
        "MT4129", "ConnectX-7", 400,
    ),
    "DGX-A100": SystemSpec(
        "NVIDIA A100-SXM4-80GB", "a100", "20b2", "GA100 [A100 SXM4 80GB]", 8, 81920, 400.0, 12, 6,
        "MT4123", "ConnectX-6", 200,
    ),
    "DGX-B200": SystemSpec(
        "NVIDIA B200", "b200", "2901", "GB100 [B200]", 8, 183359, 1000.0, 18, 2,
        "MT4129", "ConnectX-7", 400,
    ),
}

GPU_PCI_BUSES = ("18", "2a", "3a", "5d", "9a", "ab", "ba", "db")
HCA_PCI_BUSES = ("1a", "3c", "4d", "5e", "9c", "bc", "cc", "dc")
NVSWITCH_PCI_BUSES = ("05", "06", "07", "08", "09", "0a")


def system_spec(system_type: str) -> SystemSpec:
    spec = SYSTEM_SPECS.get(system_type)
    if spec is None:
        known = ", ".join(sorted(SYSTEM_SPECS))
        raise ConfigurationError(f"unknown system type {system_type!r}; expected one of: {known}")
    return spec


def gpu_family(gpu_name: str) -> str:
    """Short GRES type for a GPU marketing name, e.g. ``h100``."""
    lowered = gpu_name.lower()
    for spec in SYSTEM_SPECS.values():
        if spec.gpu_family in lowered:
            return spec.gpu_family
    return "gpu"


def _build_gpu(hostname: str, node_index: int, gpu_index: int, spec: SystemSpec) -> GPU:
    return GPU(
        id=gpu_index,
        uuid=f"GPU-{uuid.uuid5(uuid.NAMESPACE_DNS, f'{hostname}.gpu{gpu_index}')}",
        name=spec.gpu_name,
        pci_address=f"0000:{GPU_PCI_BUSES[gpu_index % len(GPU_PCI_BUSES)]}:00.0",
        serial=f"16549220{node_index:03d}{gpu_index:02d}",
        temperature=33 + (gpu_index % 4),
        power_draw=68.0 + gpu_index,
        power_limit=spec.power_limit,
        memory_total=spec.memory_total,
        nvlinks=[
            NVLinkConnection(link_id=link, remote_device=f"NVSwitch{link % max(spec.nvswitch_count, 1)}")
            for link in range(spec.nvlinks_per_gpu)
        ],
    )


def _build_hca(hostname: str, index: int, spec: SystemSpec) -> InfiniBandHCA:
    bus = HCA_PCI_BUSES[index % len(HCA_PCI_BUSES)]
    guid = uuid.uuid5(uuid.NAMESPACE_DNS, f"{hostname}.mlx5_{index}").hex[:16]
    return InfiniBandHCA(
        id=index,
        device_name=f"mlx5_{index}",
        ca_type=spec.hca_type,
        chip=spec.hca_chip,
        pci_address=f"0000:{bus}:00.0",
        node_guid=f"0x{guid}",
        sys_image_guid=f"0x{guid}",
        net_device=f"ibp{int(bus, 16)}s0",
        ports=[InfiniBandPort(port_number=1, rate=spec.hca_rate, lid=index + 1, port_guid=f"0x{guid}")],
    )


def _build_bmc(node_index: int) -> BMC:
    sensors = [
        BMCSensor(name="Inlet Temp", reading=24.0, unit="degrees C", upper_non_critical=35, upper_critical=40),
        BMCSensor(name="Exhaust Temp", reading=38.0, unit="degrees C", upper_non_critical=65, upper_critical=70),
        BMCSensor(name="CPU0 Temp", reading=45.0, unit="degrees C", upper_non_critical=90, upper_critical=95),
        BMCSensor(name="CPU1 Temp", reading=47.0, unit="degrees C", upper_non_critical=90, upper_critical=95),
        *(
            BMCSensor(name=f"FAN{fan}", reading=8400.0 + 120 * fan, unit="RPM", lower_critical=1000)
            for fan in range(1, 7)
        ),
        *(
            BMCSensor(name=f"PSU{psu} Power", reading=890.0, unit="Watts", upper_critical=3300)
            for psu in range(6)
        ),
    ]
    return BMC(
        ip_address=f"10.142.0.{node_index + 2}",
        mac_address=f"FA:16:3E:B7:10:{0x1d + node_index:02X}",
        sensors=sensors,
    )


def build_node(node_index: int, *, hostname: str, system_type: str = "DGX-H100") -> DGXNode:
    spec = system_spec(system_type)
    return DGXNode(
        id=hostname,
        hostname=hostname,
        system_type=system_type,
        gpus=[_build_gpu(hostname, node_index, index, spec) for index in range(spec.gpu_count)],
        hcas=[_build_hca(hostname, index, spec) for index in range(8)],
        bmc=_build_bmc(node_index),
        management_ip=f"10.141.0.{node_index + 2}",
        management_mac=f"FA:16:3E:C4:28:{0x1d + node_index:02X}",
    )


def build_cluster(settings: Settings | None = None) -> ClusterConfig:
    """Create a healthy cluster matching ``settings``."""
    settings = settings or Settings()
    if settings.node_count < 1:
        raise ConfigurationError("node_count must be at least 1")
    system_spec(settings.system_type)

    hostnames = [f"{settings.node_prefix}{index + 1:02d}" for index in range(settings.node_count)]
    nodes = [
        build_node(index, hostname=hostname, system_type=settings.system_type)
        for index, hostname in enumerate(hostnames)
    ]
    partitions = [
        SlurmPartition(name="gpu", nodes=hostnames, default=True),
        SlurmPartition(name="debug", nodes=hostnames[:2], max_time="2:00:00"),
    ]
    return ClusterConfig(name=settings.cluster_name, headnode=settings.headnode, nodes=nodes, partitions=partitions)
