"""Deterministic resource names derived from ``(cluster_name, role)``.

These names are the idempotency keys of every activity: an activity looks a
resource up by its derived name before creating it, so the same request
always maps to the same provider resources across retries and replays.
They must never depend on time, randomness, or the run ID.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass

# Resource roles
ROLE_NETWORK = "network"
ROLE_SUBNET = "subnet"
ROLE_IAM = "iam"
ROLE_NODE_POOL = "nodepool"
ROLE_SSH_KEY = "ssh"
ROLE_CLUSTER_USER = "cluster-user"

_NON_TOKEN = re.compile(r"[^a-zA-Z0-9-]")


@dataclass(frozen=True)
class ClusterNames:
    """Derive deterministic resource names from a cluster name."""

    cluster_name: str

    @property
    def network_stack(self) -> str:
        return f"{self.cluster_name}-{ROLE_NETWORK}"

    def subnet_stack(self, availability_zone: str) -> str:
        return f"{self.cluster_name}-{ROLE_SUBNET}-{availability_zone}"

    @property
    def iam_stack(self) -> str:
        return f"{self.cluster_name}-{ROLE_IAM}"

    @property
    def cluster_role(self) -> str:
        # IAM role names are limited to 64 characters.
        return f"{self.cluster_name}-cluster-role"[:64]

    @property
    def node_role(self) -> str:
        return f"{self.cluster_name}-node-role"[:64]

    def node_pool_stack(self, pool_name: str) -> str:
        return f"{self.cluster_name}-{ROLE_NODE_POOL}-{pool_name}"

    def node_pool_asg(self, pool_name: str) -> str:
        return f"{self.cluster_name}-{pool_name}"

    @property
    def ssh_key(self) -> str:
        return f"{self.cluster_name}-{ROLE_SSH_KEY}"

    @property
    def cluster_user(self) -> str:
        return f"{self.cluster_name}-{ROLE_CLUSTER_USER}"[:64]

    @property
    def cluster_user_secret(self) -> str:
        return f"{self.cluster_name}/cluster-user-credentials"

    @property
    def eks_cluster(self) -> str:
        return self.cluster_name


def derive_names(cluster_name: str) -> ClusterNames:
    """Factory for :class:`ClusterNames`."""
    return ClusterNames(cluster_name=cluster_name)


def request_token(run_id: str, key: str) -> str:
    """Return a provider client-request token for ``(run_id, key)``.

    CloudFormation and EKS accept a token that makes a repeated create call a
    no-op.  Tokens are limited to 64 characters of ``[a-zA-Z0-9-]``, so the
    readable prefix is truncated and a digest keeps them unique.
    """
    digest = hashlib.sha256(f"{run_id}/{key}".encode("utf-8")).hexdigest()[:16]
    prefix = _NON_TOKEN.sub("-", key)[:40]
    return f"{prefix}-{digest}"
