"""Pydantic models for provisioning requests and provisioner settings.

Defines the data structures for:
- The immutable :class:`ProvisioningRequest` submitted once per workflow run
- Node pool and subnet specifications
- Wait policies handed to the polling activities
- :class:`ProvisionerSettings`, the process-level configuration, including
  the Temporal connection
"""

from __future__ import annotations

import ipaddress
import re
from datetime import timedelta
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_CLUSTER_NAME_RE = re.compile(r"^[a-z][a-z0-9-]{0,38}[a-z0-9]$")
_POOL_NAME_RE = re.compile(r"^[a-z][a-z0-9-]{0,30}$")

#: Tag key carrying the cluster name on every created resource.
CLUSTER_TAG_KEY = "eks-provisioner:cluster"

#: Tag key carrying the resource role on every created resource.
ROLE_TAG_KEY = "eks-provisioner:role"

DEFAULT_KUBERNETES_VERSION = "1.29"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SubnetSpec(BaseModel):
    """A single subnet to create inside the cluster network.

    An empty ``availability_zone`` is filled in by ``CreateSubnet`` from the
    zones the region reports as available.
    """

    model_config = ConfigDict(frozen=True)

    cidr: str
    availability_zone: str = ""

    @field_validator("cidr")
    @classmethod
    def _valid_cidr(cls, value: str) -> str:
        ipaddress.ip_network(value)
        return value


class NodePoolSpec(BaseModel):
    """Worker node pool backed by one capacity group."""

    model_config = ConfigDict(frozen=True)

    name: str
    instance_type: str
    min_count: int = Field(default=1, ge=0)
    max_count: int = Field(default=1, ge=1)
    desired_count: int = Field(default=1, ge=0)
    image_id: str = ""
    volume_size: int = Field(default=50, ge=8)

    @field_validator("name")
    @classmethod
    def _valid_name(cls, value: str) -> str:
        if not _POOL_NAME_RE.match(value):
            raise ValueError(
                f"node pool name '{value}' must be lowercase alphanumeric/dash, "
                "start with a letter, max 31 chars"
            )
        return value

    @model_validator(mode="after")
    def _counts_ordered(self) -> "NodePoolSpec":
        if not self.min_count <= self.desired_count <= self.max_count:
            raise ValueError(
                f"node pool '{self.name}': expected min <= desired <= max, got "
                f"{self.min_count} <= {self.desired_count} <= {self.max_count}"
            )
        return self


class ProvisioningRequest(BaseModel):
    """Desired cluster, created once by the caller and never mutated.

    Attributes:
        organization: Owning organization; recorded as a tag.
        cluster_name: DNS-label cluster name; root of every idempotency key.
        region: AWS region, e.g. ``us-west-2``.
        kubernetes_version: EKS control plane version.
        network_cidr: VPC CIDR block.
        subnets: Explicit subnets; derived from *network_cidr* when empty.
        node_pools: Worker pools, at least one.
        secret_ref: Credential reference resolved by the session factory.
        ssh_public_key: Optional OpenSSH public key uploaded as a key pair.
        tags: Extra tags applied to created resources.
    """

    model_config = ConfigDict(frozen=True)

    organization: str
    cluster_name: str
    region: str
    kubernetes_version: str = DEFAULT_KUBERNETES_VERSION
    network_cidr: str = "192.168.0.0/16"
    subnets: List[SubnetSpec] = Field(default_factory=list)
    node_pools: List[NodePoolSpec] = Field(min_length=1)
    secret_ref: str = "env:"
    ssh_public_key: Optional[str] = None
    tags: Dict[str, str] = Field(default_factory=dict)

    @field_validator("cluster_name")
    @classmethod
    def _valid_cluster_name(cls, value: str) -> str:
        if not _CLUSTER_NAME_RE.match(value):
            raise ValueError(
                f"cluster name '{value}' must be 2-40 lowercase alphanumeric/dash "
                "characters starting with a letter"
            )
        return value

    @field_validator("network_cidr")
    @classmethod
    def _valid_network(cls, value: str) -> str:
        net = ipaddress.ip_network(value)
        if net.prefixlen > 24:
            raise ValueError(f"network CIDR {value} is too small (max /24)")
        return value

    @model_validator(mode="after")
    def _pools_and_subnets(self) -> "ProvisioningRequest":
        names = [p.name for p in self.node_pools]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"duplicate node pool name(s): {', '.join(dupes)}")

        network = ipaddress.ip_network(self.network_cidr)
        for subnet in self.subnets:
            if not ipaddress.ip_network(subnet.cidr).subnet_of(network):
                raise ValueError(
                    f"subnet {subnet.cidr} is outside network {self.network_cidr}"
                )
        zones = [s.availability_zone for s in self.subnets if s.availability_zone]
        if len(set(zones)) != len(zones):
            raise ValueError("subnets must be in distinct availability zones")
        return self

    def effective_subnets(self) -> List[SubnetSpec]:
        """Return explicit subnets, or two derived from the network CIDR.

        Derived subnets are the first two quarters of the network and carry
        no zone; ``CreateSubnet`` places them in the region's first two
        available zones.
        """
        if self.subnets:
            return list(self.subnets)
        network = ipaddress.ip_network(self.network_cidr)
        quarters = list(network.subnets(prefixlen_diff=2))
        return [SubnetSpec(cidr=str(quarters[0])), SubnetSpec(cidr=str(quarters[1]))]

    def resource_tags(self) -> Dict[str, str]:
        """Tags applied to every created resource (role tag added per step)."""
        tags = dict(self.tags)
        tags["organization"] = self.organization
        tags[CLUSTER_TAG_KEY] = self.cluster_name
        return tags


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


class WaitPolicy(BaseModel):
    """Bounded wait configuration.

    ``attempts`` is derived, not configured: ``max_wait // poll_interval``.
    """

    model_config = ConfigDict(frozen=True)

    poll_interval: timedelta = timedelta(seconds=5)
    max_wait: timedelta = timedelta(minutes=2)
    accept_partial: bool = False

    @model_validator(mode="after")
    def _positive(self) -> "WaitPolicy":
        if self.poll_interval.total_seconds() <= 0:
            raise ValueError("poll_interval must be positive")
        if self.max_wait < self.poll_interval:
            raise ValueError("max_wait must be >= poll_interval")
        return self

    @property
    def attempts(self) -> int:
        return int(self.max_wait.total_seconds() // self.poll_interval.total_seconds())


#: Default fulfillment wait for capacity groups (5 s cadence, 2 min ceiling).
CAPACITY_WAIT = WaitPolicy()

#: Default wait for the EKS control plane to become ACTIVE.
CONTROL_PLANE_WAIT = WaitPolicy(
    poll_interval=timedelta(seconds=30),
    max_wait=timedelta(minutes=20),
)


#: Longest silence tolerated between two heartbeats of a running activity.
HEARTBEAT_TIMEOUT = timedelta(minutes=5)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TemporalSettings(BaseModel):
    """Where the Temporal frontend lives and which queue the worker polls."""

    model_config = ConfigDict(frozen=True)

    host: str = "localhost"
    port: int = Field(default=7233, gt=0)
    namespace: str = "default"
    task_queue: str = "eks-provisioner"

    @property
    def target(self) -> str:
        """Temporal server address."""
        return f"{self.host}:{self.port}"


class ProvisionerSettings(BaseModel):
    """Process-level configuration for the worker / CLI."""

    temporal: TemporalSettings = Field(default_factory=TemporalSettings)
    capacity_wait: WaitPolicy = CAPACITY_WAIT
    control_plane_wait: WaitPolicy = CONTROL_PLANE_WAIT
    kubectl_path: str = "kubectl"
    max_workers: int = Field(default=8, ge=2)
    execution_timeout: Optional[timedelta] = timedelta(hours=2)

    @model_validator(mode="after")
    def _polls_within_heartbeat(self) -> "ProvisionerSettings":
        for label, wait in (
            ("capacity_wait", self.capacity_wait),
            ("control_plane_wait", self.control_plane_wait),
        ):
            if wait.poll_interval >= HEARTBEAT_TIMEOUT:
                raise ValueError(
                    f"{label}.poll_interval must be shorter than the "
                    f"{int(HEARTBEAT_TIMEOUT.total_seconds())}s heartbeat timeout"
                )
        return self
