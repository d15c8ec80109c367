"""AWS service interactions (sessions, naming, CloudFormation stacks)."""

from eks_provisioner.aws.cloudformation import (
    STACK_WAIT,
    StackResult,
    describe_stack,
    ensure_stack,
    require_outputs,
    stack_outputs,
    wait_for_stack,
)
from eks_provisioner.aws.naming import ClusterNames, derive_names, request_token
from eks_provisioner.aws.session import AWSSession, SessionFactory, parse_secret_ref

__all__ = [
    "AWSSession",
    "ClusterNames",
    "STACK_WAIT",
    "SessionFactory",
    "StackResult",
    "derive_names",
    "describe_stack",
    "ensure_stack",
    "parse_secret_ref",
    "request_token",
    "require_outputs",
    "stack_outputs",
    "wait_for_stack",
]
