"""EKS cluster provisioner - durable workflow orchestration core.

Provisions a managed Kubernetes cluster on AWS (network, subnets, IAM,
control plane, worker capacity, credentials, in-cluster bootstrap) as a
Temporal workflow of idempotent activities.
"""

try:
    from importlib.metadata import version

    __version__ = version("eks-cluster-provisioner")
except Exception:
    __version__ = "0.0.0.dev0"

__all__ = ["__version__"]
