"""Tests for identity activities (roles, cluster credentials, SSH key)."""

from __future__ import annotations

import json

import pytest

from eks_provisioner.activities import (
    CreateClusterCredentials,
    CreateIdentityRoles,
    UploadAccessKey,
)
from eks_provisioner.activities.iam import CLUSTER_USER_POLICY_NAME
from eks_provisioner.activities.keys import (
    CONTENT_TAG_KEY,
    content_hash,
    normalize_public_key,
)
from eks_provisioner.errors import FatalError, StepStatus, TransientError
from eks_provisioner.templates import TemplateProvider

IDENTITY = {"cluster_name": "demo", "region": "us-west-2"}

PUBLIC_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIGJ1c3lib3g ops@laptop"
USER = {"UserName": "demo-cluster-user", "Arn": "arn:aws:iam::123456789012:user/demo-cluster-user"}


# ── CreateIdentityRoles ──────────────────────────────────────────────────


class TestCreateIdentityRoles:
    def test_creates_named_iam_stack(self, sessions, ctx, client_error):
        cfn = sessions.client("cloudformation")
        outputs = [
            {"OutputKey": "ClusterRoleArn", "OutputValue": "arn:role/cluster"},
            {"OutputKey": "NodeRoleArn", "OutputValue": "arn:role/node"},
            {"OutputKey": "NodeInstanceProfileArn", "OutputValue": "arn:profile/node"},
        ]
        cfn.describe_stacks.side_effect = [
            client_error("ValidationError", "DescribeStacks", "Stack with id demo-iam does not exist"),
            {"Stacks": [{"StackStatus": "CREATE_COMPLETE", "Outputs": outputs}]},
        ]

        out = CreateIdentityRoles(sessions, TemplateProvider())(ctx, IDENTITY)

        assert out.status == StepStatus.SUCCEEDED
        assert out.cluster_role_arn == "arn:role/cluster"
        assert out.node_instance_profile_arn == "arn:profile/node"
        kwargs = cfn.create_stack.call_args.kwargs
        assert kwargs["StackName"] == "demo-iam"
        assert kwargs["Capabilities"] == ["CAPABILITY_NAMED_IAM"]
        assert {"ParameterKey": "NodeRoleName", "ParameterValue": "demo-node-role"} in kwargs["Parameters"]

    def test_access_denied_is_fatal(self, sessions, ctx, client_error):
        sessions.client("cloudformation").describe_stacks.side_effect = client_error("AccessDenied")
        with pytest.raises(FatalError):
            CreateIdentityRoles(sessions, TemplateProvider())(ctx, IDENTITY)


# ── CreateClusterCredentials ─────────────────────────────────────────────


class TestCreateClusterCredentials:
    def test_first_run_creates_user_key_and_secret(self, sessions, ctx, client_error):
        iam = sessions.client("iam")
        iam.get_user.side_effect = client_error("NoSuchEntity")
        iam.create_user.return_value = {"User": USER}
        iam.list_access_keys.return_value = {"AccessKeyMetadata": []}
        iam.create_access_key.return_value = {
            "AccessKey": {"AccessKeyId": "AKIANEW", "SecretAccessKey": "shh"},
        }
        secrets = sessions.client("secretsmanager")
        secrets.get_secret_value.side_effect = client_error("ResourceNotFoundException")

        out = CreateClusterCredentials(sessions)(ctx, IDENTITY)

        assert out.status == StepStatus.SUCCEEDED
        assert out.user_name == "demo-cluster-user"
        assert out.access_key_id == "AKIANEW"
        assert out.secret_id == "demo/cluster-user-credentials"
        assert "shh" not in out.model_dump_json()
        stored = json.loads(secrets.create_secret.call_args.kwargs["SecretString"])
        assert stored == {"aws_access_key_id": "AKIANEW", "aws_secret_access_key": "shh"}
        policy = iam.put_user_policy.call_args.kwargs
        assert policy["PolicyName"] == CLUSTER_USER_POLICY_NAME
        assert "arn:aws:eks:us-west-2:123456789012:cluster/demo" in policy["PolicyDocument"]

    def test_rerun_is_already_satisfied(self, sessions, ctx):
        iam = sessions.client("iam")
        iam.get_user.return_value = {"User": USER}
        iam.list_access_keys.return_value = {"AccessKeyMetadata": [{"AccessKeyId": "AKIAOLD"}]}
        sessions.client("secretsmanager").get_secret_value.return_value = {
            "SecretString": json.dumps({"aws_access_key_id": "AKIAOLD", "aws_secret_access_key": "x"}),
        }

        out = CreateClusterCredentials(sessions)(ctx, IDENTITY)

        assert out.status == StepStatus.ALREADY_SATISFIED
        assert out.access_key_id == "AKIAOLD"
        iam.create_user.assert_not_called()
        iam.create_access_key.assert_not_called()

    def test_orphaned_key_replaced(self, sessions, ctx, client_error):
        iam = sessions.client("iam")
        iam.get_user.return_value = {"User": USER}
        iam.list_access_keys.return_value = {"AccessKeyMetadata": [{"AccessKeyId": "AKIAORPHAN"}]}
        iam.create_access_key.return_value = {
            "AccessKey": {"AccessKeyId": "AKIANEW", "SecretAccessKey": "shh"},
        }
        secrets = sessions.client("secretsmanager")
        secrets.get_secret_value.side_effect = client_error("ResourceNotFoundException")

        out = CreateClusterCredentials(sessions)(ctx, IDENTITY)

        iam.delete_access_key.assert_called_once_with(
            UserName="demo-cluster-user", AccessKeyId="AKIAORPHAN",
        )
        assert out.access_key_id == "AKIANEW"
        secrets.create_secret.assert_called_once()

    def test_corrupt_secret_overwritten(self, sessions, ctx):
        iam = sessions.client("iam")
        iam.get_user.return_value = {"User": USER}
        iam.list_access_keys.return_value = {"AccessKeyMetadata": []}
        iam.create_access_key.return_value = {
            "AccessKey": {"AccessKeyId": "AKIANEW", "SecretAccessKey": "shh"},
        }
        secrets = sessions.client("secretsmanager")
        secrets.get_secret_value.return_value = {"SecretString": "garbage"}

        CreateClusterCredentials(sessions)(ctx, IDENTITY)

        secrets.put_secret_value.assert_called_once()
        secrets.create_secret.assert_not_called()

    def test_concurrent_user_creation(self, sessions, ctx, client_error):
        iam = sessions.client("iam")
        iam.get_user.side_effect = [client_error("NoSuchEntity"), {"User": USER}]
        iam.create_user.side_effect = client_error("EntityAlreadyExists")
        iam.list_access_keys.return_value = {"AccessKeyMetadata": [{"AccessKeyId": "AKIAOLD"}]}
        sessions.client("secretsmanager").get_secret_value.return_value = {
            "SecretString": json.dumps({"aws_access_key_id": "AKIAOLD"}),
        }

        out = CreateClusterCredentials(sessions)(ctx, IDENTITY)

        assert out.status == StepStatus.ALREADY_SATISFIED
        assert out.user_arn == USER["Arn"]

    @staticmethod
    def _account(sessions, client_error):
        """Wire the IAM and Secrets Manager mocks to one in-memory account."""
        state = {"user": None, "keys": [], "secret": None}
        iam = sessions.client("iam")
        secrets = sessions.client("secretsmanager")

        def get_user(UserName):
            if state["user"] is None:
                raise client_error("NoSuchEntity")
            return {"User": state["user"]}

        def create_user(UserName, Tags):
            state["user"] = USER
            return {"User": USER}

        def create_access_key(UserName):
            key_id = f"AKIA{len(state['keys']) + 1}"
            state["keys"].append(key_id)
            return {"AccessKey": {"AccessKeyId": key_id, "SecretAccessKey": "shh"}}

        def get_secret_value(SecretId):
            if state["secret"] is None:
                raise client_error("ResourceNotFoundException")
            return {"SecretString": state["secret"]}

        def store_secret(**kwargs):
            state["secret"] = kwargs["SecretString"]

        iam.get_user.side_effect = get_user
        iam.create_user.side_effect = create_user
        iam.create_access_key.side_effect = create_access_key
        iam.list_access_keys.side_effect = lambda UserName: {
            "AccessKeyMetadata": [{"AccessKeyId": k} for k in state["keys"]],
        }
        secrets.get_secret_value.side_effect = get_secret_value
        secrets.create_secret.side_effect = store_secret
        secrets.put_secret_value.side_effect = store_secret
        return state

    def test_rerun_after_completion_returns_same_key(self, sessions, ctx, retry_ctx, client_error):
        self._account(sessions, client_error)
        activity = CreateClusterCredentials(sessions)

        first = activity(ctx, IDENTITY)
        second = activity(retry_ctx, IDENTITY)

        assert first.status == StepStatus.SUCCEEDED
        assert second.status == StepStatus.ALREADY_SATISFIED
        assert (second.user_arn, second.access_key_id, second.secret_id) == (
            first.user_arn, first.access_key_id, first.secret_id,
        )
        iam = sessions.client("iam")
        iam.create_user.assert_called_once()
        iam.create_access_key.assert_called_once()
        iam.delete_access_key.assert_not_called()

    def test_rerun_after_failure_before_policy(self, sessions, ctx, retry_ctx, client_error):
        state = self._account(sessions, client_error)
        iam = sessions.client("iam")
        iam.put_user_policy.side_effect = [client_error("ServiceUnavailable"), None, None]
        activity = CreateClusterCredentials(sessions)

        with pytest.raises(TransientError):
            activity(ctx, IDENTITY)
        assert state["user"] == USER and state["keys"] == []

        first = activity(retry_ctx, IDENTITY)
        second = activity(retry_ctx, IDENTITY)

        assert first.user_arn == USER["Arn"]
        assert second.status == StepStatus.ALREADY_SATISFIED
        assert second.access_key_id == first.access_key_id == "AKIA1"
        iam.create_user.assert_called_once()


# ── UploadAccessKey ──────────────────────────────────────────────────────


class TestPublicKeyHelpers:
    def test_normalize_drops_comment(self):
        assert normalize_public_key(PUBLIC_KEY) == PUBLIC_KEY.rsplit(" ", 1)[0]

    def test_hash_ignores_comment(self):
        other = PUBLIC_KEY.replace("ops@laptop", "someone@else")
        assert content_hash(PUBLIC_KEY) == content_hash(other)

    @pytest.mark.parametrize("material", ["", "not a key", "ssh-dss AAAA"])
    def test_rejects_non_openssh(self, material):
        with pytest.raises(FatalError):
            normalize_public_key(material)


class TestUploadAccessKey:
    def _input(self, key=PUBLIC_KEY):
        return dict(IDENTITY, public_key=key)

    def test_imports_new_key(self, sessions, ctx, client_error):
        ec2 = sessions.client("ec2")
        ec2.describe_key_pairs.side_effect = client_error("InvalidKeyPair.NotFound")
        ec2.import_key_pair.return_value = {"KeyPairId": "key-1", "KeyName": "demo-ssh"}

        out = UploadAccessKey(sessions)(ctx, self._input())

        assert out.status == StepStatus.SUCCEEDED
        assert out.key_name == "demo-ssh"
        assert out.key_pair_id == "key-1"
        kwargs = ec2.import_key_pair.call_args.kwargs
        tags = {t["Key"]: t["Value"] for t in kwargs["TagSpecifications"][0]["Tags"]}
        assert tags[CONTENT_TAG_KEY] == content_hash(PUBLIC_KEY)

    def test_same_content_is_already_satisfied(self, sessions, ctx):
        ec2 = sessions.client("ec2")
        ec2.describe_key_pairs.return_value = {"KeyPairs": [{
            "KeyPairId": "key-1",
            "Tags": [{"Key": CONTENT_TAG_KEY, "Value": content_hash(PUBLIC_KEY)}],
        }]}

        out = UploadAccessKey(sessions)(ctx, self._input())

        assert out.status == StepStatus.ALREADY_SATISFIED
        ec2.import_key_pair.assert_not_called()
        ec2.delete_key_pair.assert_not_called()

    def test_changed_content_replaces_key(self, sessions, ctx):
        ec2 = sessions.client("ec2")
        ec2.describe_key_pairs.return_value = {"KeyPairs": [{
            "KeyPairId": "key-1",
            "Tags": [{"Key": CONTENT_TAG_KEY, "Value": "stale"}],
        }]}
        ec2.import_key_pair.return_value = {"KeyPairId": "key-2"}

        out = UploadAccessKey(sessions)(ctx, self._input())

        ec2.delete_key_pair.assert_called_once_with(KeyName="demo-ssh")
        assert out.key_pair_id == "key-2"

    def test_duplicate_with_other_content_is_fatal(self, sessions, ctx, client_error):
        ec2 = sessions.client("ec2")
        ec2.describe_key_pairs.side_effect = [
            client_error("InvalidKeyPair.NotFound"),
            {"KeyPairs": [{"KeyPairId": "key-x", "Tags": []}]},
        ]
        ec2.import_key_pair.side_effect = client_error("InvalidKeyPair.Duplicate")
        with pytest.raises(FatalError):
            UploadAccessKey(sessions)(ctx, self._input())

    def test_invalid_key_is_fatal(self, sessions, ctx):
        with pytest.raises(FatalError, match="OpenSSH"):
            UploadAccessKey(sessions)(ctx, self._input(key="garbage"))
