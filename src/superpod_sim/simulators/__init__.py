"""Per-tool simulators and the default registry wiring."""

from __future__ import annotations

from superpod_sim.core.registry import SimulatorRegistry
from superpod_sim.simulators.base import BaseSimulator
from superpod_sim.simulators.bug_report import NvidiaBugReportSimulator
from superpod_sim.simulators.builtins import BuiltinsSimulator
from superpod_sim.simulators.cmsh import CmshSimulator
from superpod_sim.simulators.dcgmi import DcgmiSimulator
from superpod_sim.simulators.fabric_manager import FabricManagerSimulator
from superpod_sim.simulators.files import FilesSimulator
from superpod_sim.simulators.infiniband import InfiniBandSimulator
from superpod_sim.simulators.ipmitool import IpmitoolSimulator
from superpod_sim.simulators.nvidia_smi import NvidiaSmiSimulator
from superpod_sim.simulators.nvsm import NvsmSimulator
from superpod_sim.simulators.pci_tools import PciToolsSimulator
from superpod_sim.simulators.slurm import SlurmSimulator
from superpod_sim.simulators.system_tools import SystemToolsSimulator


def default_simulators() -> list[BaseSimulator]:
    """Fresh instances of every simulator; interactive state is per instance."""
    return [
        BuiltinsSimulator(),
        NvidiaSmiSimulator(),
        DcgmiSimulator(),
        IpmitoolSimulator(),
        SlurmSimulator(),
        CmshSimulator(),
        NvsmSimulator(),
        PciToolsSimulator(),
        NvidiaBugReportSimulator(),
        InfiniBandSimulator(),
        SystemToolsSimulator(),
        FabricManagerSimulator(),
        FilesSimulator(),
    ]


def build_default_registry() -> SimulatorRegistry:
    registry = SimulatorRegistry()
    for simulator in default_simulators():
        registry.register(simulator)
    return registry


__all__ = [
    "BaseSimulator",
    "BuiltinsSimulator",
    "CmshSimulator",
    "DcgmiSimulator",
    "FabricManagerSimulator",
    "FilesSimulator",
    "InfiniBandSimulator",
    "IpmitoolSimulator",
    "NvidiaBugReportSimulator",
    "NvidiaSmiSimulator",
    "NvsmSimulator",
    "PciToolsSimulator",
    "SlurmSimulator",
    "SystemToolsSimulator",
    "build_default_registry",
    "default_simulators",
]
