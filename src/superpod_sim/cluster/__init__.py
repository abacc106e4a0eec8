"""Virtual cluster state shared by every simulator."""

from superpod_sim.cluster.models import GPU, ClusterConfig, DGXNode, InfiniBandHCA, XIDError
from superpod_sim.cluster.store import ClusterStore

__all__ = ["GPU", "ClusterConfig", "ClusterStore", "DGXNode", "InfiniBandHCA", "XIDError"]
