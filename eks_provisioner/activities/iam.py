"""Identity activities: cluster/node roles and the in-cluster IAM user.

``CreateIdentityRoles`` is a single CloudFormation stack with deterministic
role names.  ``CreateClusterCredentials`` manages the IAM user directly:

1. Ensure the user ``<cluster>-cluster-user`` exists (tagged).
2. Ensure its inline ``eks:DescribeCluster`` policy.
3. If the credentials secret exists and names a key the user still has,
   return it (``AlreadySatisfied``).
4. Otherwise delete the user's orphaned keys (their secrets were never
   stored), create a new key and store it in Secrets Manager.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Tuple

from botocore.exceptions import ClientError

from eks_provisioner.activities.base import Activity
from eks_provisioner.activities.models import (
    ClusterCredentialsInput,
    ClusterCredentialsOutput,
    IdentityRolesInput,
    IdentityRolesOutput,
    status_for,
)
from eks_provisioner.aws.cloudformation import ensure_stack, require_outputs, to_tags
from eks_provisioner.aws.naming import ROLE_CLUSTER_USER, ROLE_IAM, request_token
from eks_provisioner.errors import StepStatus, error_code
from eks_provisioner.runtime.context import ActivityContext
from eks_provisioner.templates.provider import KIND_IAM

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CLUSTER_USER_POLICY_NAME = "eks-describe-cluster"


def _describe_cluster_policy(account_id: str, region: str, cluster_name: str) -> str:
    return json.dumps(
        {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Action": ["eks:DescribeCluster"],
                    "Resource": (
                        f"arn:aws:eks:{region}:{account_id or '*'}:cluster/{cluster_name}"
                    ),
                }
            ],
        },
        sort_keys=True,
    )


# ---------------------------------------------------------------------------
# CreateIdentityRoles
# ---------------------------------------------------------------------------


class CreateIdentityRoles(Activity):
    """Ensure the control plane role, node role and node instance profile."""

    name = "CreateIdentityRoles"
    input_type = IdentityRolesInput
    output_type = IdentityRolesOutput

    def execute(
        self, ctx: ActivityContext, arg: IdentityRolesInput,
    ) -> IdentityRolesOutput:
        names = self.names(arg)
        aws = self.session_for(arg)
        result = ensure_stack(
            aws.client("cloudformation"),
            ctx,
            stack_name=names.iam_stack,
            template_body=self.templates.get(KIND_IAM),
            parameters={
                "ClusterRoleName": names.cluster_role,
                "NodeRoleName": names.node_role,
            },
            tags=self.tags_for(arg, ROLE_IAM),
            capabilities=("CAPABILITY_NAMED_IAM",),
            token=request_token(ctx.run_id, ctx.step),
            step=ctx.step,
        )
        outputs = require_outputs(
            result,
            ("ClusterRoleArn", "NodeRoleArn", "NodeInstanceProfileArn"),
            step=ctx.step,
        )
        return IdentityRolesOutput(
            status=status_for(result.created),
            cluster_role_arn=outputs["ClusterRoleArn"],
            node_role_arn=outputs["NodeRoleArn"],
            node_instance_profile_arn=outputs["NodeInstanceProfileArn"],
        )


# ---------------------------------------------------------------------------
# CreateClusterCredentials
# ---------------------------------------------------------------------------


class CreateClusterCredentials(Activity):
    """Ensure the IAM user (and stored access key) used inside the cluster."""

    name = "CreateClusterCredentials"
    input_type = ClusterCredentialsInput
    output_type = ClusterCredentialsOutput

    def execute(
        self, ctx: ActivityContext, arg: ClusterCredentialsInput,
    ) -> ClusterCredentialsOutput:
        names = self.names(arg)
        aws = self.session_for(arg)
        iam = aws.client("iam")
        secrets = aws.client("secretsmanager")
        user_name = names.cluster_user
        secret_id = names.cluster_user_secret

        user, user_created = self._ensure_user(iam, user_name, arg)
        iam.put_user_policy(
            UserName=user_name,
            PolicyName=CLUSTER_USER_POLICY_NAME,
            PolicyDocument=_describe_cluster_policy(
                aws.account_id, arg.region, arg.cluster_name,
            ),
        )

        active_keys = {
            k["AccessKeyId"]
            for k in iam.list_access_keys(UserName=user_name).get("AccessKeyMetadata", [])
        }
        stored = self._read_secret(secrets, secret_id)
        if stored and stored.get("aws_access_key_id") in active_keys:
            logger.info(
                "Credentials for %s already stored in %s.", user_name, secret_id,
            )
            return ClusterCredentialsOutput(
                status=StepStatus.SUCCEEDED if user_created else StepStatus.ALREADY_SATISFIED,
                user_name=user_name,
                user_arn=user["Arn"],
                access_key_id=stored["aws_access_key_id"],
                secret_id=secret_id,
            )

        for key_id in sorted(active_keys):
            logger.warning(
                "Deleting access key %s of %s: its secret was never stored.",
                key_id, user_name,
            )
            iam.delete_access_key(UserName=user_name, AccessKeyId=key_id)

        key = iam.create_access_key(UserName=user_name)["AccessKey"]
        payload = json.dumps({
            "aws_access_key_id": key["AccessKeyId"],
            "aws_secret_access_key": key["SecretAccessKey"],
        })
        if stored is None:
            secrets.create_secret(
                Name=secret_id,
                SecretString=payload,
                Tags=to_tags(self.tags_for(arg, ROLE_CLUSTER_USER)),
            )
        else:
            secrets.put_secret_value(SecretId=secret_id, SecretString=payload)
        logger.info("Stored new access key for %s in %s.", user_name, secret_id)

        return ClusterCredentialsOutput(
            user_name=user_name,
            user_arn=user["Arn"],
            access_key_id=key["AccessKeyId"],
            secret_id=secret_id,
        )

    # -- internals ------------------------------------------------------

    def _ensure_user(
        self, iam: Any, user_name: str, arg: ClusterCredentialsInput,
    ) -> Tuple[Dict[str, Any], bool]:
        try:
            return iam.get_user(UserName=user_name)["User"], False
        except ClientError as exc:
            if error_code(exc) != "NoSuchEntity":
                raise

        logger.info("Creating IAM user %s", user_name)
        try:
            user = iam.create_user(
                UserName=user_name,
                Tags=to_tags(self.tags_for(arg, ROLE_CLUSTER_USER)),
            )["User"]
        except ClientError as exc:
            if error_code(exc) != "EntityAlreadyExists":
                raise
            return iam.get_user(UserName=user_name)["User"], False
        return user, True

    @staticmethod
    def _read_secret(secrets: Any, secret_id: str) -> Optional[Dict[str, str]]:
        """Return the stored credentials, ``{}`` if unreadable, ``None`` if absent."""
        try:
            resp = secrets.get_secret_value(SecretId=secret_id)
        except ClientError as exc:
            if error_code(exc) == "ResourceNotFoundException":
                return None
            raise
        try:
            payload = json.loads(resp.get("SecretString") or "")
        except json.JSONDecodeError:
            payload = None
        if not isinstance(payload, dict):
            logger.warning("Secret %s is not a JSON object, replacing it.", secret_id)
            return {}
        return payload
