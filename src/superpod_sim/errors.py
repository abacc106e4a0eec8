"""Application-level exception types for the simulator."""

from __future__ import annotations


class SimulatorError(Exception):
    """Base exception for the simulator."""


class ConfigurationError(SimulatorError):
    """Raised when settings cannot describe a valid cluster."""


class ClusterStateError(SimulatorError):
    """Base exception for rejected cluster state mutations."""


class NodeNotFoundError(ClusterStateError):
    """Raised when a node id or hostname does not resolve."""


class GpuNotFoundError(ClusterStateError):
    """Raised when a GPU index does not exist on a node."""


class JobNotFoundError(ClusterStateError):
    """Raised when a Slurm job id is unknown."""


class InsufficientResourcesError(ClusterStateError):
    """Raised when an allocation asks for more GPUs than are free."""


class ServiceNotFoundError(ClusterStateError):
    """Raised when a systemd unit is not part of the node image."""
