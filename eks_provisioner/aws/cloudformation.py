"""Idempotent CloudFormation stack ensure.

Every template-backed activity (network, subnet, identity, node pool) goes
through :func:`ensure_stack`:

1. Describe the stack by its deterministic name.
2. ``CREATE_COMPLETE`` / ``UPDATE_COMPLETE`` → return outputs, nothing created.
3. In progress → wait for it (a previous attempt started it).
4. Failed / rolled back → fatal; the stack must be inspected and deleted by
   an operator before the step can succeed.
5. Absent → ``create_stack`` with a client request token, then wait.

Waiting uses :class:`~eks_provisioner.poller.BoundedPoller` so the hosting
activity heartbeats and reacts to cancellation while the stack builds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from botocore.exceptions import ClientError

from eks_provisioner.config.models import WaitPolicy
from eks_provisioner.errors import FatalError, FulfillmentTimeout, error_code
from eks_provisioner.poller import BoundedPoller

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Stack statuses that mean "done, no action needed".
COMPLETE_STATUSES = frozenset({
    "CREATE_COMPLETE",
    "UPDATE_COMPLETE",
    "UPDATE_ROLLBACK_COMPLETE",
})

#: Stack statuses that are actively in progress.
IN_PROGRESS_STATUSES = frozenset({
    "CREATE_IN_PROGRESS",
    "UPDATE_IN_PROGRESS",
    "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS",
    "UPDATE_ROLLBACK_IN_PROGRESS",
    "UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS",
    "REVIEW_IN_PROGRESS",
})

#: Stack statuses that need an operator before the step can succeed.
FAILED_STATUSES = frozenset({
    "CREATE_FAILED",
    "ROLLBACK_IN_PROGRESS",
    "ROLLBACK_COMPLETE",
    "ROLLBACK_FAILED",
    "DELETE_IN_PROGRESS",
    "DELETE_FAILED",
    "UPDATE_ROLLBACK_FAILED",
})

#: Default wait for a stack to finish creating.
STACK_WAIT = WaitPolicy(
    poll_interval=timedelta(seconds=10),
    max_wait=timedelta(minutes=30),
)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass
class StackResult:
    """Outcome of :func:`ensure_stack`."""

    stack_name: str
    status: str
    created: bool
    outputs: Dict[str, str] = field(default_factory=dict)
    stack_id: str = ""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_parameters(params: Dict[str, Any]) -> List[Dict[str, str]]:
    """``{"Key": "v"}`` → CloudFormation ``Parameters`` list (sorted)."""
    return [
        {"ParameterKey": k, "ParameterValue": str(params[k])}
        for k in sorted(params)
    ]


def to_tags(tags: Dict[str, str]) -> List[Dict[str, str]]:
    """``{"Key": "v"}`` → AWS ``Tags`` list (sorted)."""
    return [{"Key": k, "Value": str(tags[k])} for k in sorted(tags)]


def _stack_missing(exc: ClientError) -> bool:
    return (
        error_code(exc) == "ValidationError"
        and "does not exist" in str(exc)
    )


def describe_stack(cfn_client: Any, stack_name: str) -> Optional[Dict[str, Any]]:
    """Return the stack description, or ``None`` if the stack doesn't exist.

    Errors other than "does not exist" propagate for classification.
    """
    try:
        resp = cfn_client.describe_stacks(StackName=stack_name)
    except ClientError as exc:
        if _stack_missing(exc):
            return None
        raise
    stacks = resp.get("Stacks", [])
    return stacks[0] if stacks else None


def stack_outputs(stack: Dict[str, Any]) -> Dict[str, str]:
    """Flatten ``Outputs`` into ``{OutputKey: OutputValue}``."""
    return {
        o["OutputKey"]: o["OutputValue"]
        for o in stack.get("Outputs", [])
    }


def require_outputs(
    result: StackResult, keys: Sequence[str], *, step: str = "",
) -> Dict[str, str]:
    """Return *result* outputs, failing fatally if any of *keys* is absent."""
    missing = [k for k in keys if not result.outputs.get(k)]
    if missing:
        raise FatalError(
            f"stack {result.stack_name} is missing output(s): {', '.join(missing)}",
            step=step,
            resource=result.stack_name,
        )
    return result.outputs


# ---------------------------------------------------------------------------
# Wait
# ---------------------------------------------------------------------------


def wait_for_stack(
    cfn_client: Any,
    stack_name: str,
    ctx: Any,
    *,
    policy: WaitPolicy = STACK_WAIT,
    step: str = "",
) -> Dict[str, Any]:
    """Poll until *stack_name* is complete and return its description.

    Raises:
        FatalError: If the stack fails or disappears.
        FulfillmentTimeout: If the wait policy runs out.
    """
    def probe() -> Tuple[bool, Dict[str, Any]]:
        stack = describe_stack(cfn_client, stack_name)
        if stack is None:
            raise FatalError(
                f"stack {stack_name} disappeared while waiting",
                step=step,
                resource=stack_name,
            )
        status = stack.get("StackStatus", "")
        if status in FAILED_STATUSES:
            raise FatalError(
                f"stack {stack_name} failed with status {status}: "
                f"{stack.get('StackStatusReason', 'no reason given')}",
                step=step,
                resource=stack_name,
                details={"status": status},
            )
        return status in COMPLETE_STATUSES, stack

    outcome = BoundedPoller(policy, ctx).run(
        probe, label=f"stack {stack_name}", step=step, resource=stack_name,
    )
    if not outcome.done:
        last = outcome.last_value or {}
        raise FulfillmentTimeout(
            f"stack {stack_name} still {last.get('StackStatus', 'unknown')} "
            f"after {outcome.attempts} attempts",
            attempts=outcome.attempts,
            step=step,
            resource=stack_name,
        )
    return outcome.last_value


# ---------------------------------------------------------------------------
# Core ensure logic
# ---------------------------------------------------------------------------


def ensure_stack(
    cfn_client: Any,
    ctx: Any,
    *,
    stack_name: str,
    template_body: str,
    parameters: Dict[str, Any],
    tags: Dict[str, str],
    capabilities: Sequence[str] = (),
    token: str = "",
    policy: WaitPolicy = STACK_WAIT,
    step: str = "",
) -> StackResult:
    """Ensure *stack_name* exists and is complete; return its outputs.

    ``created`` on the result is *False* when the stack already existed
    (the idempotent short-circuit).
    """
    stack = describe_stack(cfn_client, stack_name)
    status = stack.get("StackStatus", "") if stack else ""

    if status in COMPLETE_STATUSES:
        logger.info("Stack %s already in %s, skipping creation.", stack_name, status)
        return StackResult(
            stack_name=stack_name,
            status=status,
            created=False,
            outputs=stack_outputs(stack),
            stack_id=stack.get("StackId", ""),
        )

    if status in FAILED_STATUSES:
        raise FatalError(
            f"stack {stack_name} is in {status}; inspect and delete it before retrying",
            step=step,
            resource=stack_name,
            details={"status": status},
        )

    created = False
    if status in IN_PROGRESS_STATUSES:
        logger.info("Stack %s is %s, waiting for completion.", stack_name, status)
    else:
        kwargs: Dict[str, Any] = dict(
            StackName=stack_name,
            TemplateBody=template_body,
            Parameters=to_parameters(parameters),
            Tags=to_tags(tags),
        )
        if capabilities:
            kwargs["Capabilities"] = list(capabilities)
        if token:
            kwargs["ClientRequestToken"] = token

        logger.info("Creating stack %s ...", stack_name)
        try:
            cfn_client.create_stack(**kwargs)
            created = True
        except ClientError as exc:
            if error_code(exc) != "AlreadyExistsException":
                raise
            logger.info("Stack %s created concurrently, waiting for it.", stack_name)

    final = wait_for_stack(cfn_client, stack_name, ctx, policy=policy, step=step)
    logger.info("Stack %s is %s.", stack_name, final.get("StackStatus"))
    return StackResult(
        stack_name=stack_name,
        status=final.get("StackStatus", ""),
        created=created,
        outputs=stack_outputs(final),
        stack_id=final.get("StackId", ""),
    )
