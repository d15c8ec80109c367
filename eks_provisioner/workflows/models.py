"""Workflow outputs and the progress a running workflow reports."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from eks_provisioner.activities.models import (
    AccessKeyOutput,
    BootstrapOutput,
    CapacityGroupOutput,
    ClusterCredentialsOutput,
    ControlPlaneOutput,
    DescribeSubnetsOutput,
    IdentityRolesOutput,
    NetworkConfigOutput,
    NetworkOutput,
    SubnetOutput,
)


class InfrastructureOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    network: NetworkOutput
    subnets: SubnetOutput
    subnet_details: DescribeSubnetsOutput
    identity: IdentityRolesOutput
    network_config: NetworkConfigOutput
    control_plane: ControlPlaneOutput


class ClusterOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    infrastructure: InfrastructureOutput
    access_key: Optional[AccessKeyOutput] = None
    capacity_groups: List[CapacityGroupOutput] = Field(default_factory=list)
    credentials: ClusterCredentialsOutput
    bootstrap: BootstrapOutput

    @property
    def fully_fulfilled(self) -> bool:
        return all(group.fulfilled for group in self.capacity_groups)


class WorkflowProgress(BaseModel):
    """What a running workflow reports through its ``progress`` query.

    ``completed_steps`` is in completion order and ``outputs`` holds each
    completed step's result, which is what an operator needs to clean up
    after a failed run.
    """

    completed_steps: List[str] = Field(default_factory=list)
    running_steps: List[str] = Field(default_factory=list)
    outputs: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    @property
    def last_completed_step(self) -> str:
        return self.completed_steps[-1] if self.completed_steps else ""
