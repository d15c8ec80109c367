"""CreateCapacityGroup: node pool stack plus capacity fulfillment wait.

Steps:

1. Resolve the node image (the pool's ``image_id`` or the EKS-optimised AMI
   published in SSM for the cluster's Kubernetes version).
2. Ensure the ``<cluster>-nodepool-<pool>`` stack (launch template + ASG).
3. Wait until the ASG reports ``desired_count`` healthy, in-service
   instances (bounded: ``max_wait // poll_interval`` queries).

With ``WaitPolicy.accept_partial`` a wait that times out still succeeds
when at least ``min_count`` instances are healthy; the output then reports
``fulfilled=False``.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from eks_provisioner.activities.base import Activity
from eks_provisioner.activities.models import (
    CapacityGroupInput,
    CapacityGroupOutput,
    status_for,
)
from eks_provisioner.aws.cloudformation import ensure_stack, require_outputs
from eks_provisioner.aws.naming import ROLE_NODE_POOL, request_token
from eks_provisioner.aws.session import SessionFactory
from eks_provisioner.config.models import CAPACITY_WAIT, WaitPolicy
from eks_provisioner.errors import FulfillmentTimeout
from eks_provisioner.poller import wait_for_fulfillment
from eks_provisioner.runtime.context import ActivityContext
from eks_provisioner.templates.provider import KIND_NODE_POOL, TemplateProvider

logger = logging.getLogger(__name__)

#: SSM parameter publishing the recommended EKS-optimised AMI.
EKS_AMI_PARAMETER = "/aws/service/eks/optimized-ami/{version}/amazon-linux-2/recommended/image_id"


def resolve_image_id(ssm: Any, kubernetes_version: str) -> str:
    resp = ssm.get_parameter(Name=EKS_AMI_PARAMETER.format(version=kubernetes_version))
    return resp["Parameter"]["Value"]


def count_healthy_instances(autoscaling: Any, group_name: str) -> int:
    """Number of ``Healthy`` + ``InService`` instances in *group_name*.

    A group that does not exist (yet) counts as zero.
    """
    resp = autoscaling.describe_auto_scaling_groups(AutoScalingGroupNames=[group_name])
    groups = resp.get("AutoScalingGroups", [])
    if not groups:
        return 0
    return sum(
        1
        for inst in groups[0].get("Instances", [])
        if inst.get("HealthStatus") == "Healthy"
        and inst.get("LifecycleState") == "InService"
    )


class CreateCapacityGroup(Activity):
    name = "CreateCapacityGroup"
    input_type = CapacityGroupInput
    output_type = CapacityGroupOutput

    def __init__(
        self,
        sessions: SessionFactory,
        templates: Optional[TemplateProvider] = None,
        *,
        wait: WaitPolicy = CAPACITY_WAIT,
    ) -> None:
        super().__init__(sessions, templates)
        self.wait = wait

    def execute(
        self, ctx: ActivityContext, arg: CapacityGroupInput,
    ) -> CapacityGroupOutput:
        pool = arg.node_pool
        names = self.names(arg)
        aws = self.session_for(arg)
        policy = arg.wait or self.wait

        image_id = pool.image_id or resolve_image_id(
            aws.client("ssm"), arg.kubernetes_version,
        )
        result = ensure_stack(
            aws.client("cloudformation"),
            ctx,
            stack_name=names.node_pool_stack(pool.name),
            template_body=self.templates.get(KIND_NODE_POOL),
            parameters={
                "ClusterName": arg.cluster_name,
                "NodeGroupName": pool.name,
                "AutoScalingGroupName": names.node_pool_asg(pool.name),
                "NodeImageId": image_id,
                "NodeInstanceType": pool.instance_type,
                "NodeInstanceProfileArn": arg.node_instance_profile_arn,
                "NodeSecurityGroupId": arg.security_group_id,
                "NodeVolumeSize": pool.volume_size,
                "NodeAutoScalingGroupMinSize": pool.min_count,
                "NodeAutoScalingGroupMaxSize": pool.max_count,
                "NodeAutoScalingGroupDesiredCapacity": pool.desired_count,
                "ApiServerEndpoint": arg.endpoint,
                "CertificateAuthorityData": arg.certificate_authority,
                "Subnets": ",".join(arg.subnet_ids),
            },
            tags=self.tags_for(arg, ROLE_NODE_POOL),
            token=request_token(ctx.run_id, ctx.step),
            step=ctx.step,
        )
        group_name = require_outputs(
            result, ("AutoScalingGroupName",), step=ctx.step,
        )["AutoScalingGroupName"]

        autoscaling = aws.client("autoscaling")
        try:
            state = wait_for_fulfillment(
                lambda: count_healthy_instances(autoscaling, group_name),
                pool.desired_count,
                policy,
                ctx,
                step=ctx.step,
                resource=group_name,
            )
        except FulfillmentTimeout as exc:
            if not (policy.accept_partial and exc.observed >= pool.min_count):
                raise
            logger.warning(
                "Node pool %s partially fulfilled: %d/%d healthy (min %d), accepting.",
                pool.name, exc.observed, exc.desired, pool.min_count,
            )
            return CapacityGroupOutput(
                status=status_for(result.created),
                pool_name=pool.name,
                stack_name=result.stack_name,
                auto_scaling_group_name=group_name,
                image_id=image_id,
                desired=pool.desired_count,
                healthy=exc.observed,
                attempts=exc.attempts,
                fulfilled=False,
            )

        logger.info(
            "Node pool %s fulfilled: %d/%d healthy after %d attempt(s).",
            pool.name, state.healthy, pool.desired_count, state.attempts,
        )
        return CapacityGroupOutput(
            status=status_for(result.created),
            pool_name=pool.name,
            stack_name=result.stack_name,
            auto_scaling_group_name=group_name,
            image_id=image_id,
            desired=pool.desired_count,
            healthy=state.healthy,
            attempts=state.attempts,
        )
