"""Pydantic models for the virtual DGX cluster."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

HealthStatus = Literal["OK", "Warning", "Critical"]
XidSeverity = Literal["Critical", "Warning", "Informational"]
NVLinkStatus = Literal["Active", "Inactive", "Down"]
PortState = Literal["Active", "Down", "Init", "Armed", "Polling"]
PhysicalState = Literal["LinkUp", "Disabled", "Polling", "Sleep"]
SlurmNodeState = Literal["idle", "alloc", "mix", "drain", "down"]
JobState = Literal["PENDING", "RUNNING", "COMPLETED", "CANCELLED", "FAILED"]


class ECCCounts(BaseModel):
    """Single- and double-bit error counters."""

    single_bit: int = 0
    double_bit: int = 0


class ECCErrors(BaseModel):
    """Volatile counters since driver load plus lifetime aggregates."""

    single_bit: int = 0
    double_bit: int = 0
    aggregated: ECCCounts = Field(default_factory=ECCCounts)

    @property
    def worst_single_bit(self) -> int:
        return max(self.single_bit, self.aggregated.single_bit)

    @property
    def worst_double_bit(self) -> int:
        return max(self.double_bit, self.aggregated.double_bit)


class XIDError(BaseModel):
    """One driver-reported XID event."""

    code: int
    timestamp: datetime
    description: str = ""
    severity: XidSeverity = "Warning"
    pid: int | None = None
    process_name: str = "python3"


class NVLinkConnection(BaseModel):
    link_id: int
    status: NVLinkStatus = "Active"
    speed: float = 26.562
    remote_device: str = "NVSwitch"
    tx_errors: int = 0
    rx_errors: int = 0
    replay_errors: int = 0
    recovery_errors: int = 0
    crc_errors: int = 0


class GPU(BaseModel):
    """A single GPU as seen by the driver."""

    id: int
    uuid: str
    name: str = "NVIDIA H100 80GB HBM3"
    pci_address: str
    serial: str = ""
    vbios_version: str = "96.00.89.00.01"
    temperature: int = 34
    power_draw: float = 72.0
    power_limit: float = 700.0
    memory_total: int = 81559
    memory_used: int = 0
    utilization: int = 0
    sm_clock: int = 1980
    memory_clock: int = 2619
    ecc_errors: ECCErrors = Field(default_factory=ECCErrors)
    xid_errors: list[XIDError] = Field(default_factory=list)
    nvlinks: list[NVLinkConnection] = Field(default_factory=list)
    pcie_link_speed: int = 16
    pcie_link_width: int = 16
    health_status: HealthStatus = "OK"
    allocated_job_id: int | None = None
    persistence_mode: bool = True
    mig_mode: bool = False


class InfiniBandPort(BaseModel):
    port_number: int = 1
    state: PortState = "Active"
    physical_state: PhysicalState = "LinkUp"
    rate: int = 400
    lid: int = 1
    sm_lid: int = 1
    port_guid: str = ""
    link_layer: str = "InfiniBand"
    symbol_errors: int = 0
    link_error_recovery: int = 0
    link_downed: int = 0
    port_rcv_errors: int = 0
    port_xmit_discards: int = 0

    @property
    def error_total(self) -> int:
        return (
            self.symbol_errors
            + self.link_error_recovery
            + self.link_downed
            + self.port_rcv_errors
            + self.port_xmit_discards
        )


class InfiniBandHCA(BaseModel):
    """A ConnectX host channel adapter."""

    id: int
    device_name: str
    ca_type: str = "ConnectX-7"
    chip: str = "MT4129"
    pci_address: str
    firmware: str = "28.39.1002"
    node_guid: str = ""
    sys_image_guid: str = ""
    net_device: str = ""
    ports: list[InfiniBandPort] = Field(default_factory=list)


class BMCSensor(BaseModel):
    name: str
    reading: float | None
    unit: str
    lower_critical: float | None = None
    upper_non_critical: float | None = None
    upper_critical: float | None = None


class BMC(BaseModel):
    """Baseboard management controller of one node."""

    ip_address: str
    mac_address: str
    firmware_version: str = "23.09.20"
    manufacturer: str = "NVIDIA"
    power_state: Literal["on", "off"] = "on"
    sensors: list[BMCSensor] = Field(default_factory=list)


class DGXNode(BaseModel):
    """One DGX compute node."""

    id: str
    hostname: str
    system_type: str = "DGX-H100"
    gpus: list[GPU] = Field(default_factory=list)
    hcas: list[InfiniBandHCA] = Field(default_factory=list)
    bmc: BMC
    management_ip: str = ""
    management_mac: str = ""
    cpu_model: str = "Intel(R) Xeon(R) Platinum 8480C"
    cpu_count: int = 2
    cores_per_socket: int = 56
    ram_total: int = 2048
    ram_used: int = 96
    os_version: str = "Ubuntu 22.04.3 LTS"
    kernel_version: str = "5.15.0-1035-nvidia"
    nvidia_driver_version: str = "535.129.03"
    cuda_version: str = "12.2"
    slurm_state: SlurmNodeState = "idle"
    slurm_reason: str | None = None
    health_status: HealthStatus = "OK"
    root_fs_usage: int = 23
    # Overrides of the service catalogue defaults, keyed by unit name.
    service_active: dict[str, bool] = Field(default_factory=dict)
    service_enabled: dict[str, bool] = Field(default_factory=dict)

    @property
    def logical_cores(self) -> int:
        return self.cpu_count * self.cores_per_socket * 2


class SlurmJob(BaseModel):
    job_id: int
    name: str
    user: str = "root"
    account: str = "compute"
    partition: str = "gpu"
    state: JobState = "RUNNING"
    nodes: list[str] = Field(default_factory=list)
    gpus_per_node: int = 0
    submit_time: datetime
    time_limit: str = "1-00:00:00"
    script: str = ""


class SlurmPartition(BaseModel):
    name: str
    nodes: list[str] = Field(default_factory=list)
    default: bool = False
    max_time: str = "infinite"
    state: Literal["up", "down"] = "up"


class ClusterConfig(BaseModel):
    """The whole simulated SuperPOD."""

    name: str = "dgx-cluster"
    headnode: str = "dgx-headnode"
    nodes: list[DGXNode] = Field(default_factory=list)
    jobs: list[SlurmJob] = Field(default_factory=list)
    partitions: list[SlurmPartition] = Field(default_factory=list)
    boot_time: datetime = datetime(2024, 6, 15, 8, 0, 0)
    next_job_id: int = 1001

    def find_node(self, node_id: str) -> DGXNode | None:
        for node in self.nodes:
            if node_id in (node.id, node.hostname):
                return node
        return None
