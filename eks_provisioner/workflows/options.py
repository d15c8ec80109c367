"""Activity options shared by both workflows.

Timeouts are per attempt.  Mutating steps wait on CloudFormation stacks (up
to 30 minutes each) and on bounded provider polls, so they get a long
start-to-close window; liveness is enforced by the heartbeat timeout, which
every poll tick resets.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict

from temporalio.common import RetryPolicy

from eks_provisioner.config.models import HEARTBEAT_TIMEOUT
from eks_provisioner.runtime.temporal import NON_RETRYABLE_TYPES

#: Transient failures back off 1s, 2s, 4s ... capped at 60s, five tries in all.
ACTIVITY_RETRY = RetryPolicy(
    initial_interval=timedelta(seconds=1),
    backoff_coefficient=2.0,
    maximum_interval=timedelta(seconds=60),
    maximum_attempts=5,
    non_retryable_error_types=NON_RETRYABLE_TYPES,
)

LOOKUP_TIMEOUT = timedelta(minutes=5)
STEP_TIMEOUT = timedelta(minutes=90)

#: Read-only steps that never wait on the provider.
LOOKUP_ACTIVITIES = frozenset({"DescribeSubnets", "DescribeNetworkConfig"})


def activity_options(name: str) -> Dict[str, Any]:
    """Keyword arguments for ``workflow.execute_activity`` of *name*."""
    return {
        "start_to_close_timeout": (
            LOOKUP_TIMEOUT if name in LOOKUP_ACTIVITIES else STEP_TIMEOUT
        ),
        "heartbeat_timeout": HEARTBEAT_TIMEOUT,
        "retry_policy": ACTIVITY_RETRY,
    }
