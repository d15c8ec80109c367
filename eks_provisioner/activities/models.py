"""Typed activity inputs and outputs.

Every input carries the cluster identity (``cluster_name``, ``region``,
``secret_ref``, ``tags``) so an activity can resolve its own session and
derive its idempotency keys without any state from a previous invocation.

Every output is a frozen :class:`StepResult` with a ``status`` of
``Succeeded`` or ``AlreadySatisfied``.  Inputs and outputs cross Temporal
as JSON through the pydantic data converter and are recorded in workflow
history, so they must round-trip through ``model_dump(mode="json")``.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from eks_provisioner.config.models import (
    NodePoolSpec,
    ProvisioningRequest,
    SubnetSpec,
    WaitPolicy,
)
from eks_provisioner.errors import StepStatus


# ---------------------------------------------------------------------------
# Bases
# ---------------------------------------------------------------------------


class ActivityInput(BaseModel):
    """Fields shared by every activity input."""

    model_config = ConfigDict(frozen=True)

    cluster_name: str
    region: str
    secret_ref: str = "env:"
    tags: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def identity(cls, request: ProvisioningRequest) -> Dict[str, object]:
        """Return the shared fields for *request* as keyword arguments."""
        return {
            "cluster_name": request.cluster_name,
            "region": request.region,
            "secret_ref": request.secret_ref,
            "tags": request.resource_tags(),
        }


class StepResult(BaseModel):
    """Base of every activity output."""

    model_config = ConfigDict(frozen=True)

    status: StepStatus = StepStatus.SUCCEEDED

    @property
    def already_satisfied(self) -> bool:
        return self.status == StepStatus.ALREADY_SATISFIED


def status_for(created: bool) -> StepStatus:
    """``Succeeded`` when something was created, else ``AlreadySatisfied``."""
    return StepStatus.SUCCEEDED if created else StepStatus.ALREADY_SATISFIED


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------


class NetworkInput(ActivityInput):
    network_cidr: str


class NetworkOutput(StepResult):
    vpc_id: str
    security_group_id: str
    route_table_id: str
    stack_name: str = ""


class SubnetInput(ActivityInput):
    vpc_id: str
    route_table_id: str
    subnets: List[SubnetSpec] = Field(min_length=1)


class SubnetOutput(StepResult):
    subnet_ids: List[str]


class DescribeSubnetsInput(ActivityInput):
    subnet_ids: List[str] = Field(min_length=1)


class SubnetDetail(BaseModel):
    model_config = ConfigDict(frozen=True)

    subnet_id: str
    vpc_id: str
    availability_zone: str
    cidr_block: str
    route_table_id: str = ""
    map_public_ip_on_launch: bool = False


class DescribeSubnetsOutput(StepResult):
    subnets: List[SubnetDetail]

    @property
    def subnet_ids(self) -> List[str]:
        return [s.subnet_id for s in self.subnets]


class NetworkConfigInput(ActivityInput):
    vpc_id: str


class NetworkConfigOutput(StepResult):
    vpc_id: str
    cidr_block: str
    security_group_ids: List[str] = Field(default_factory=list)
    enable_dns_support: bool = False
    enable_dns_hostnames: bool = False


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class IdentityRolesInput(ActivityInput):
    pass


class IdentityRolesOutput(StepResult):
    cluster_role_arn: str
    node_role_arn: str
    node_instance_profile_arn: str


class AccessKeyInput(ActivityInput):
    public_key: str


class AccessKeyOutput(StepResult):
    key_name: str
    key_pair_id: str = ""
    content_sha256: str


class ClusterCredentialsInput(ActivityInput):
    pass


class ClusterCredentialsOutput(StepResult):
    """Credentials for in-cluster use.

    The secret access key itself is never part of the output (outputs are
    recorded in workflow history in plain text); it lives in the Secrets
    Manager secret ``secret_id``.
    """

    user_name: str
    user_arn: str
    access_key_id: str
    secret_id: str


# ---------------------------------------------------------------------------
# Control plane
# ---------------------------------------------------------------------------


class ControlPlaneInput(ActivityInput):
    kubernetes_version: str
    subnet_ids: List[str] = Field(min_length=1)
    security_group_ids: List[str] = Field(default_factory=list)
    cluster_role_arn: str


class ControlPlaneOutput(StepResult):
    cluster_name: str
    arn: str = ""
    endpoint: str
    certificate_authority: str
    cluster_security_group_id: str = ""
    kubernetes_version: str = ""
    control_plane_status: str = "ACTIVE"


# ---------------------------------------------------------------------------
# Capacity
# ---------------------------------------------------------------------------


class CapacityGroupInput(ActivityInput):
    """One node pool plus the infrastructure it attaches to.

    ``wait`` overrides the activity's configured fulfillment policy.
    """

    node_pool: NodePoolSpec
    kubernetes_version: str
    subnet_ids: List[str] = Field(min_length=1)
    security_group_id: str
    node_instance_profile_arn: str
    endpoint: str
    certificate_authority: str
    wait: Optional[WaitPolicy] = None


class CapacityGroupOutput(StepResult):
    pool_name: str
    stack_name: str
    auto_scaling_group_name: str
    image_id: str
    desired: int
    healthy: int
    attempts: int = 0
    fulfilled: bool = True


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------


class BootstrapInput(ActivityInput):
    endpoint: str
    certificate_authority: str
    node_role_arn: str
    user_arn: str
    user_name: str
    system_namespace: str = "eks-provisioner-system"


class BootstrapOutput(StepResult):
    applied: List[str]
    marker: str
