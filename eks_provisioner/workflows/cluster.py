"""CreateClusterWorkflow: infrastructure, capacity, credentials, bootstrap.

::

    CreateInfrastructureWorkflow (child)
        -> { UploadAccessKey | CreateCapacityGroup per node pool }  (concurrent)
        -> join
        -> CreateClusterCredentials
        -> Bootstrap

Bootstrap never starts before every concurrent step has completed; the
first failure among them (in submission order) aborts the run.
"""

from __future__ import annotations

import asyncio
from typing import Any, List, Optional

from temporalio import workflow

with workflow.unsafe.imports_passed_through():
    from eks_provisioner.activities import (
        Bootstrap,
        CreateCapacityGroup,
        CreateClusterCredentials,
        UploadAccessKey,
    )
    from eks_provisioner.activities.models import (
        AccessKeyInput,
        AccessKeyOutput,
        ActivityInput,
        BootstrapInput,
        BootstrapOutput,
        CapacityGroupInput,
        CapacityGroupOutput,
        ClusterCredentialsInput,
        ClusterCredentialsOutput,
    )
    from eks_provisioner.config.models import ProvisioningRequest
    from eks_provisioner.workflows.base import StepRecorder
    from eks_provisioner.workflows.infrastructure import (
        INFRASTRUCTURE_WORKFLOW,
        CreateInfrastructureWorkflow,
    )
    from eks_provisioner.workflows.models import (
        ClusterOutput,
        InfrastructureOutput,
        WorkflowProgress,
    )

CLUSTER_WORKFLOW = "CreateClusterWorkflow"


def capacity_step_key(pool_name: str) -> str:
    """Activity ID of the capacity step for *pool_name*."""
    return f"{CreateCapacityGroup.name}:{pool_name}"


def infrastructure_workflow_id(workflow_id: str) -> str:
    """Workflow ID of the infrastructure child of cluster run *workflow_id*."""
    return f"{workflow_id}/infrastructure"


@workflow.defn(name=CLUSTER_WORKFLOW)
class CreateClusterWorkflow(StepRecorder):
    """A complete cluster for one :class:`ProvisioningRequest`."""

    @workflow.run
    async def run(self, request: ProvisioningRequest) -> ClusterOutput:
        infra: InfrastructureOutput = await workflow.execute_child_workflow(
            CreateInfrastructureWorkflow.run,
            request,
            id=infrastructure_workflow_id(workflow.info().workflow_id),
        )
        self.record(INFRASTRUCTURE_WORKFLOW, infra)

        identity = ActivityInput.identity(request)
        control_plane = infra.control_plane

        pending: List[Any] = []
        if request.ssh_public_key:
            pending.append(self.step(
                UploadAccessKey.name,
                AccessKeyInput(public_key=request.ssh_public_key, **identity),
                AccessKeyOutput,
            ))
        for pool in request.node_pools:
            pending.append(self.step(
                CreateCapacityGroup.name,
                CapacityGroupInput(
                    node_pool=pool,
                    kubernetes_version=request.kubernetes_version,
                    subnet_ids=infra.subnet_details.subnet_ids,
                    security_group_id=(
                        control_plane.cluster_security_group_id
                        or infra.network.security_group_id
                    ),
                    node_instance_profile_arn=infra.identity.node_instance_profile_arn,
                    endpoint=control_plane.endpoint,
                    certificate_authority=control_plane.certificate_authority,
                    **identity,
                ),
                CapacityGroupOutput,
                key=capacity_step_key(pool.name),
            ))

        results = await asyncio.gather(*pending, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        access_key: Optional[AccessKeyOutput] = (
            results[0] if request.ssh_public_key else None
        )
        groups: List[CapacityGroupOutput] = list(
            results[1:] if request.ssh_public_key else results
        )

        credentials = await self.step(
            CreateClusterCredentials.name,
            ClusterCredentialsInput(**identity),
            ClusterCredentialsOutput,
        )
        bootstrap = await self.step(
            Bootstrap.name,
            BootstrapInput(
                endpoint=control_plane.endpoint,
                certificate_authority=control_plane.certificate_authority,
                node_role_arn=infra.identity.node_role_arn,
                user_arn=credentials.user_arn,
                user_name=credentials.user_name,
                **identity,
            ),
            BootstrapOutput,
        )

        output = ClusterOutput(
            infrastructure=infra,
            access_key=access_key,
            capacity_groups=groups,
            credentials=credentials,
            bootstrap=bootstrap,
        )
        if not output.fully_fulfilled:
            workflow.logger.warning(
                "Cluster %s is running with partial capacity.", request.cluster_name,
            )
        return output

    @workflow.query
    def progress(self) -> WorkflowProgress:
        return self._progress
