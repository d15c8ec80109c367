"""Packaged CloudFormation templates and bootstrap manifests."""

from eks_provisioner.templates.provider import (
    KIND_BOOTSTRAP,
    KIND_IAM,
    KIND_NETWORK,
    KIND_NODE_POOL,
    KIND_SUBNET,
    TemplateProvider,
)

__all__ = [
    "KIND_BOOTSTRAP",
    "KIND_IAM",
    "KIND_NETWORK",
    "KIND_NODE_POOL",
    "KIND_SUBNET",
    "TemplateProvider",
]
