"""Tests for eks_provisioner.aws.cloudformation."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from eks_provisioner.aws.cloudformation import (
    StackResult,
    describe_stack,
    ensure_stack,
    require_outputs,
    stack_outputs,
    to_parameters,
    to_tags,
)
from eks_provisioner.config.models import WaitPolicy
from eks_provisioner.errors import FatalError, FulfillmentTimeout

FAST = WaitPolicy(poll_interval=timedelta(seconds=1), max_wait=timedelta(seconds=3))


def _stack(status, outputs=None):
    return {
        "StackName": "demo-network",
        "StackId": "arn:aws:cloudformation:us-west-2:123:stack/demo-network/1",
        "StackStatus": status,
        "Outputs": [
            {"OutputKey": k, "OutputValue": v} for k, v in (outputs or {}).items()
        ],
    }


def _missing(client_error):
    return client_error(
        "ValidationError", "DescribeStacks", "Stack with id demo-network does not exist",
    )


def _ensure(cfn, ctx, **kwargs):
    defaults = dict(
        stack_name="demo-network",
        template_body="Resources: {}",
        parameters={"ClusterName": "demo"},
        tags={"b": "2", "a": "1"},
        policy=FAST,
        step="CreateNetwork",
    )
    defaults.update(kwargs)
    return ensure_stack(cfn, ctx, **defaults)


class TestHelpers:
    def test_to_parameters_sorted(self):
        assert to_parameters({"B": 2, "A": "x"}) == [
            {"ParameterKey": "A", "ParameterValue": "x"},
            {"ParameterKey": "B", "ParameterValue": "2"},
        ]

    def test_to_tags_sorted(self):
        assert to_tags({"b": "2", "a": "1"}) == [
            {"Key": "a", "Value": "1"},
            {"Key": "b", "Value": "2"},
        ]

    def test_stack_outputs(self):
        assert stack_outputs(_stack("CREATE_COMPLETE", {"VpcId": "vpc-1"})) == {"VpcId": "vpc-1"}

    def test_require_outputs_missing(self):
        result = StackResult("demo-network", "CREATE_COMPLETE", False, {"VpcId": "vpc-1"})
        with pytest.raises(FatalError, match="SecurityGroupId"):
            require_outputs(result, ["VpcId", "SecurityGroupId"])


class TestDescribeStack:
    def test_missing_returns_none(self, client_error):
        cfn = MagicMock()
        cfn.describe_stacks.side_effect = _missing(client_error)
        assert describe_stack(cfn, "demo-network") is None

    def test_other_errors_propagate(self, client_error):
        cfn = MagicMock()
        cfn.describe_stacks.side_effect = client_error("AccessDenied")
        with pytest.raises(Exception) as exc_info:
            describe_stack(cfn, "demo-network")
        assert "AccessDenied" in str(exc_info.value)


class TestEnsureStack:
    def test_existing_complete_stack_short_circuits(self, ctx):
        cfn = MagicMock()
        cfn.describe_stacks.return_value = {
            "Stacks": [_stack("CREATE_COMPLETE", {"VpcId": "vpc-1"})],
        }
        result = _ensure(cfn, ctx)
        assert result.created is False
        assert result.outputs == {"VpcId": "vpc-1"}
        cfn.create_stack.assert_not_called()

    def test_creates_then_waits(self, ctx, sleeps, client_error):
        cfn = MagicMock()
        cfn.describe_stacks.side_effect = [
            _missing(client_error),
            {"Stacks": [_stack("CREATE_IN_PROGRESS")]},
            {"Stacks": [_stack("CREATE_COMPLETE", {"VpcId": "vpc-1"})]},
        ]
        result = _ensure(
            cfn, ctx, token="tok-1", capabilities=["CAPABILITY_NAMED_IAM"],
        )
        assert result.created is True
        assert result.status == "CREATE_COMPLETE"
        assert result.outputs["VpcId"] == "vpc-1"
        kwargs = cfn.create_stack.call_args.kwargs
        assert kwargs["StackName"] == "demo-network"
        assert kwargs["ClientRequestToken"] == "tok-1"
        assert kwargs["Capabilities"] == ["CAPABILITY_NAMED_IAM"]
        assert kwargs["Tags"] == [{"Key": "a", "Value": "1"}, {"Key": "b", "Value": "2"}]
        assert sleeps == [1.0]

    def test_in_progress_stack_is_awaited_not_recreated(self, ctx):
        cfn = MagicMock()
        cfn.describe_stacks.side_effect = [
            {"Stacks": [_stack("CREATE_IN_PROGRESS")]},
            {"Stacks": [_stack("CREATE_COMPLETE")]},
        ]
        result = _ensure(cfn, ctx)
        assert result.created is False
        cfn.create_stack.assert_not_called()

    def test_rolled_back_stack_is_fatal(self, ctx):
        cfn = MagicMock()
        cfn.describe_stacks.return_value = {"Stacks": [_stack("ROLLBACK_COMPLETE")]}
        with pytest.raises(FatalError, match="ROLLBACK_COMPLETE") as exc_info:
            _ensure(cfn, ctx)
        assert exc_info.value.step == "CreateNetwork"

    def test_concurrent_create_is_tolerated(self, ctx, client_error):
        cfn = MagicMock()
        cfn.describe_stacks.side_effect = [
            _missing(client_error),
            {"Stacks": [_stack("CREATE_COMPLETE")]},
        ]
        cfn.create_stack.side_effect = client_error("AlreadyExistsException")
        result = _ensure(cfn, ctx)
        assert result.created is False
        assert result.status == "CREATE_COMPLETE"

    def test_failure_while_waiting_is_fatal(self, ctx, client_error):
        cfn = MagicMock()
        failed = _stack("ROLLBACK_IN_PROGRESS")
        failed["StackStatusReason"] = "Resource creation cancelled"
        cfn.describe_stacks.side_effect = [_missing(client_error), {"Stacks": [failed]}]
        with pytest.raises(FatalError, match="Resource creation cancelled"):
            _ensure(cfn, ctx)

    def test_wait_budget_exhausted(self, ctx, client_error):
        cfn = MagicMock()
        cfn.describe_stacks.side_effect = [_missing(client_error)] + [
            {"Stacks": [_stack("CREATE_IN_PROGRESS")]}
        ] * 3
        with pytest.raises(FulfillmentTimeout) as exc_info:
            _ensure(cfn, ctx)
        assert exc_info.value.attempts == 3
