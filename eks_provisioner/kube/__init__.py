"""kubectl wrapper and EKS kubeconfig generation."""

from eks_provisioner.kube.auth import build_kubeconfig, eks_token
from eks_provisioner.kube.runner import KubectlResult, apply_manifest, run_kubectl

__all__ = [
    "KubectlResult",
    "apply_manifest",
    "build_kubeconfig",
    "eks_token",
    "run_kubectl",
]
