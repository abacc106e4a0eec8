"""systemd units installed on every DGX node image."""

from __future__ import annotations

from dataclasses import dataclass

from superpod_sim.cluster.models import DGXNode


@dataclass(frozen=True)
class ServiceInfo:
    """Static description of one unit."""

    name: str
    description: str
    command: str
    pid: int
    tasks: int
    started_after: int
    active: bool = True
    enabled: bool = True

    @property
    def unit(self) -> str:
        return f"{self.name}.service"

    @property
    def unit_file(self) -> str:
        return f"/lib/systemd/system/{self.unit}"


SERVICES: tuple[ServiceInfo, ...] = (
    ServiceInfo("containerd", "containerd container runtime", "/usr/bin/containerd", 1874, 22, 10),
    ServiceInfo("docker", "Docker Application Container Engine", "/usr/bin/dockerd -H fd://", 1942, 31, 11),
    ServiceInfo("munge", "MUNGE authentication service", "/usr/sbin/munged", 1520, 4, 9),
    ServiceInfo("nvidia-dcgm", "NVIDIA DCGM service", "/usr/bin/nv-hostengine -n --service-account nvidia-dcgm",
                2210, 12, 16),
    ServiceInfo("nvidia-fabricmanager", "NVIDIA fabric manager service",
                "/usr/bin/nv-fabricmanager -c /usr/share/nvidia/nvswitch/fabricmanager.cfg", 2101, 9, 13),
    ServiceInfo("nvidia-persistenced", "NVIDIA Persistence Daemon", "/usr/bin/nvidia-persistenced --verbose",
                1693, 1, 12),
    ServiceInfo("nvsm-core", "NVSM Core Service", "/usr/bin/nvsm-core", 2042, 18, 14),
    ServiceInfo("openibd", "openibd - configure Mellanox devices", "/etc/init.d/openibd start", 1402, 1, 8),
    ServiceInfo("opensm", "OpenSM InfiniBand subnet manager", "/usr/sbin/opensm", 0, 0, 0,
                active=False, enabled=False),
    ServiceInfo("slurmctld", "Slurm controller daemon", "/usr/sbin/slurmctld -D -s", 0, 0, 0,
                active=False, enabled=False),
    ServiceInfo("slurmd", "Slurm node daemon", "/usr/sbin/slurmd -D -s", 2315, 3, 18),
    ServiceInfo("slurmdbd", "Slurm DBD accounting daemon", "/usr/sbin/slurmdbd -D -s", 0, 0, 0,
                active=False, enabled=False),
    ServiceInfo("sshd", "OpenBSD Secure Shell server", "sshd: /usr/sbin/sshd -D [listener] 0 of 10-100 startups",
                1611, 1, 10),
)

_BY_NAME = {service.name: service for service in SERVICES}


def lookup_service(name: str) -> ServiceInfo | None:
    """Resolve ``name`` with or without the ``.service`` suffix."""
    return _BY_NAME.get(name.removesuffix(".service"))


def is_active(node: DGXNode, service: ServiceInfo) -> bool:
    return node.service_active.get(service.name, service.active)


def is_enabled(node: DGXNode, service: ServiceInfo) -> bool:
    return node.service_enabled.get(service.name, service.enabled)
