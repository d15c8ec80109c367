"""Workflows: sequencing of activities, no provider calls."""

from eks_provisioner.workflows.cluster import (
    CLUSTER_WORKFLOW,
    CreateClusterWorkflow,
    capacity_step_key,
    infrastructure_workflow_id,
)
from eks_provisioner.workflows.infrastructure import (
    INFRASTRUCTURE_WORKFLOW,
    CreateInfrastructureWorkflow,
)
from eks_provisioner.workflows.models import (
    ClusterOutput,
    InfrastructureOutput,
    WorkflowProgress,
)

#: Every workflow a worker registers, keyed by registered name.
WORKFLOWS = {
    CLUSTER_WORKFLOW: CreateClusterWorkflow,
    INFRASTRUCTURE_WORKFLOW: CreateInfrastructureWorkflow,
}

__all__ = [
    "CLUSTER_WORKFLOW",
    "ClusterOutput",
    "CreateClusterWorkflow",
    "CreateInfrastructureWorkflow",
    "INFRASTRUCTURE_WORKFLOW",
    "InfrastructureOutput",
    "WORKFLOWS",
    "WorkflowProgress",
    "capacity_step_key",
    "infrastructure_workflow_id",
]
