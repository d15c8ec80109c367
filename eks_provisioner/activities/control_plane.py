"""CreateControlPlane: ensure the EKS cluster and wait until it is ACTIVE.

The EKS API creates the control plane asynchronously (typically 10-15
minutes).  The activity describes the cluster first, creates it with a
client request token when absent, then polls ``describe_cluster`` through
:class:`~eks_provisioner.poller.BoundedPoller` so it heartbeats between
polls and stops promptly on cancellation.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from botocore.exceptions import ClientError

from eks_provisioner.activities.base import Activity
from eks_provisioner.activities.models import (
    ControlPlaneInput,
    ControlPlaneOutput,
    status_for,
)
from eks_provisioner.aws.naming import request_token
from eks_provisioner.aws.session import SessionFactory
from eks_provisioner.config.models import CONTROL_PLANE_WAIT, WaitPolicy
from eks_provisioner.errors import FatalError, FulfillmentTimeout, error_code
from eks_provisioner.poller import BoundedPoller
from eks_provisioner.runtime.context import ActivityContext

logger = logging.getLogger(__name__)

ACTIVE = "ACTIVE"
FAILED_STATUSES = frozenset({"FAILED", "DELETING"})


def describe_cluster(eks: Any, name: str) -> Optional[Dict[str, Any]]:
    """Return the EKS cluster description, or ``None`` if it doesn't exist."""
    try:
        return eks.describe_cluster(name=name)["cluster"]
    except ClientError as exc:
        if error_code(exc) == "ResourceNotFoundException":
            return None
        raise


class CreateControlPlane(Activity):
    name = "CreateControlPlane"
    input_type = ControlPlaneInput
    output_type = ControlPlaneOutput

    def __init__(
        self,
        sessions: SessionFactory,
        templates: Any = None,
        *,
        wait: WaitPolicy = CONTROL_PLANE_WAIT,
    ) -> None:
        super().__init__(sessions, templates)
        self.wait = wait

    def execute(
        self, ctx: ActivityContext, arg: ControlPlaneInput,
    ) -> ControlPlaneOutput:
        cluster_name = self.names(arg).eks_cluster
        eks = self.session_for(arg).client("eks")

        cluster = describe_cluster(eks, cluster_name)
        created = False
        if cluster is None:
            created = self._create(ctx, eks, cluster_name, arg)
        else:
            self._check_compatible(cluster, arg, ctx.step)
            logger.info(
                "EKS cluster %s already exists (%s).", cluster_name, cluster.get("status"),
            )

        cluster = self._wait_active(ctx, eks, cluster_name)
        return ControlPlaneOutput(
            status=status_for(created),
            cluster_name=cluster_name,
            arn=cluster.get("arn", ""),
            endpoint=cluster.get("endpoint", ""),
            certificate_authority=cluster.get("certificateAuthority", {}).get("data", ""),
            cluster_security_group_id=(
                cluster.get("resourcesVpcConfig", {}).get("clusterSecurityGroupId", "")
            ),
            kubernetes_version=cluster.get("version", ""),
            control_plane_status=cluster.get("status", ""),
        )

    # -- internals ------------------------------------------------------

    def _create(
        self, ctx: ActivityContext, eks: Any, cluster_name: str, arg: ControlPlaneInput,
    ) -> bool:
        logger.info(
            "Creating EKS cluster %s (Kubernetes %s) ...",
            cluster_name, arg.kubernetes_version,
        )
        try:
            eks.create_cluster(
                name=cluster_name,
                version=arg.kubernetes_version,
                roleArn=arg.cluster_role_arn,
                resourcesVpcConfig={
                    "subnetIds": list(arg.subnet_ids),
                    "securityGroupIds": list(arg.security_group_ids),
                    "endpointPublicAccess": True,
                    "endpointPrivateAccess": True,
                },
                tags=dict(arg.tags),
                clientRequestToken=request_token(ctx.run_id, ctx.step),
            )
        except ClientError as exc:
            if error_code(exc) != "ResourceInUseException":
                raise
            logger.info("EKS cluster %s created concurrently.", cluster_name)
            return False
        return True

    @staticmethod
    def _check_compatible(
        cluster: Dict[str, Any], arg: ControlPlaneInput, step: str,
    ) -> None:
        status = cluster.get("status", "")
        if status in FAILED_STATUSES:
            raise FatalError(
                f"EKS cluster {cluster.get('name')} is {status}",
                step=step,
                resource=cluster.get("name", ""),
                details={"status": status},
            )
        role = cluster.get("roleArn", "")
        if role and role != arg.cluster_role_arn:
            raise FatalError(
                f"EKS cluster {cluster.get('name')} exists with role {role}, "
                f"expected {arg.cluster_role_arn}",
                step=step,
                resource=cluster.get("name", ""),
            )

    def _wait_active(
        self, ctx: ActivityContext, eks: Any, cluster_name: str,
    ) -> Dict[str, Any]:
        def probe() -> Tuple[bool, Dict[str, Any]]:
            cluster = describe_cluster(eks, cluster_name)
            if cluster is None:
                raise FatalError(
                    f"EKS cluster {cluster_name} disappeared while waiting",
                    step=ctx.step,
                    resource=cluster_name,
                )
            status = cluster.get("status", "")
            if status in FAILED_STATUSES:
                raise FatalError(
                    f"EKS cluster {cluster_name} is {status}",
                    step=ctx.step,
                    resource=cluster_name,
                    details={"status": status},
                )
            return status == ACTIVE, cluster

        outcome = BoundedPoller(self.wait, ctx).run(
            probe,
            label=f"EKS cluster {cluster_name}",
            step=ctx.step,
            resource=cluster_name,
        )
        if not outcome.done:
            last = outcome.last_value or {}
            raise FulfillmentTimeout(
                f"EKS cluster {cluster_name} still {last.get('status', 'unknown')} "
                f"after {outcome.attempts} attempts",
                attempts=outcome.attempts,
                step=ctx.step,
                resource=cluster_name,
            )
        return outcome.last_value
