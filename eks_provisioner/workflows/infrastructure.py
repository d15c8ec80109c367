"""CreateInfrastructureWorkflow: network, subnets, identity, control plane.

Strictly sequential; each step's output feeds the next step's input and the
first failure aborts the rest of the sequence::

    CreateNetwork -> CreateSubnet -> DescribeSubnets -> CreateIdentityRoles
        -> DescribeNetworkConfig -> CreateControlPlane
"""

from __future__ import annotations

from temporalio import workflow

with workflow.unsafe.imports_passed_through():
    from eks_provisioner.activities import (
        CreateControlPlane,
        CreateIdentityRoles,
        CreateNetwork,
        CreateSubnet,
        DescribeNetworkConfig,
        DescribeSubnets,
    )
    from eks_provisioner.activities.models import (
        ActivityInput,
        ControlPlaneInput,
        ControlPlaneOutput,
        DescribeSubnetsInput,
        DescribeSubnetsOutput,
        IdentityRolesInput,
        IdentityRolesOutput,
        NetworkConfigInput,
        NetworkConfigOutput,
        NetworkInput,
        NetworkOutput,
        SubnetInput,
        SubnetOutput,
    )
    from eks_provisioner.config.models import ProvisioningRequest
    from eks_provisioner.workflows.base import StepRecorder
    from eks_provisioner.workflows.models import InfrastructureOutput, WorkflowProgress

INFRASTRUCTURE_WORKFLOW = "CreateInfrastructureWorkflow"


@workflow.defn(name=INFRASTRUCTURE_WORKFLOW)
class CreateInfrastructureWorkflow(StepRecorder):
    """Network through control plane for one :class:`ProvisioningRequest`."""

    @workflow.run
    async def run(self, request: ProvisioningRequest) -> InfrastructureOutput:
        identity = ActivityInput.identity(request)

        network = await self.step(
            CreateNetwork.name,
            NetworkInput(network_cidr=request.network_cidr, **identity),
            NetworkOutput,
        )
        subnets = await self.step(
            CreateSubnet.name,
            SubnetInput(
                vpc_id=network.vpc_id,
                route_table_id=network.route_table_id,
                subnets=request.effective_subnets(),
                **identity,
            ),
            SubnetOutput,
        )
        subnet_details = await self.step(
            DescribeSubnets.name,
            DescribeSubnetsInput(subnet_ids=subnets.subnet_ids, **identity),
            DescribeSubnetsOutput,
        )
        roles = await self.step(
            CreateIdentityRoles.name,
            IdentityRolesInput(**identity),
            IdentityRolesOutput,
        )
        network_config = await self.step(
            DescribeNetworkConfig.name,
            NetworkConfigInput(vpc_id=network.vpc_id, **identity),
            NetworkConfigOutput,
        )
        control_plane = await self.step(
            CreateControlPlane.name,
            ControlPlaneInput(
                kubernetes_version=request.kubernetes_version,
                subnet_ids=subnet_details.subnet_ids,
                security_group_ids=(
                    network_config.security_group_ids or [network.security_group_id]
                ),
                cluster_role_arn=roles.cluster_role_arn,
                **identity,
            ),
            ControlPlaneOutput,
        )
        workflow.logger.info(
            "Infrastructure for %s ready: endpoint %s",
            request.cluster_name, control_plane.endpoint,
        )
        return InfrastructureOutput(
            network=network,
            subnets=subnets,
            subnet_details=subnet_details,
            identity=roles,
            network_config=network_config,
            control_plane=control_plane,
        )

    @workflow.query
    def progress(self) -> WorkflowProgress:
        return self._progress
