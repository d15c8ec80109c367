"""Bounded polling for asynchronous provider fulfillment.

Replaces open-ended ``while True: sleep`` loops with an explicit attempt
budget derived from a :class:`~eks_provisioner.config.models.WaitPolicy`::

    attempts = max_wait // poll_interval      # 120s / 5s → 24 queries

Rules:

* The probe runs immediately, then once per interval, at most ``attempts``
  times.  The number of provider queries is therefore deterministic.
* A transient probe failure consumes an attempt, exactly like a
  "not yet" answer, so a flaky API cannot cause unbounded polling.
* Fatal probe failures propagate immediately.
* Before every sleep the hosting activity heartbeats; sleeps go through the
  activity context so cancellation wakes them, and cancellation is checked
  on every tick.

The hosting activity supplies a context object with ``heartbeat(details)``,
``sleep(seconds)`` and ``is_cancelled()``; see
:class:`eks_provisioner.runtime.context.ActivityContext`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Optional, Tuple, TypeVar

from eks_provisioner.config.models import WaitPolicy
from eks_provisioner.errors import (
    ActivityCancelled,
    FulfillmentTimeout,
    TransientError,
    classify_provider_error,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

#: A probe returns ``(done, observed_value)``.
Probe = Callable[[], Tuple[bool, T]]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class PollOutcome(Generic[T]):
    """Outcome of :meth:`BoundedPoller.run`."""

    done: bool
    attempts: int
    failures: int = 0
    last_value: Optional[T] = None
    last_error: str = ""
    elapsed_seconds: float = 0.0


@dataclass
class FulfillmentState:
    """Transient bookkeeping of one fulfillment wait.

    Lives only for the duration of :func:`wait_for_fulfillment`.
    """

    requested: int
    healthy: int = 0
    attempts: int = 0
    failures: int = 0
    last_error: str = ""
    history: list = field(default_factory=list)

    @property
    def fulfilled(self) -> bool:
        return self.healthy >= self.requested


# ---------------------------------------------------------------------------
# Poller
# ---------------------------------------------------------------------------


class BoundedPoller:
    """Poll a probe on a fixed cadence with a fixed attempt budget."""

    def __init__(
        self,
        policy: WaitPolicy,
        ctx: Any,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy
        self.ctx = ctx
        self._clock = clock

    @property
    def max_attempts(self) -> int:
        return self.policy.attempts

    def run(
        self,
        probe: Probe,
        *,
        label: str = "",
        step: str = "",
        resource: str = "",
    ) -> PollOutcome:
        """Poll *probe* until it reports done or the budget is spent.

        Raises:
            ActivityCancelled: If the run is cancelled between ticks.
            ProvisioningError: Non-transient probe failures.
        """
        interval = self.policy.poll_interval.total_seconds()
        start = self._clock()
        outcome: PollOutcome = PollOutcome(done=False, attempts=0)

        for attempt in range(1, self.max_attempts + 1):
            if self.ctx.is_cancelled():
                raise ActivityCancelled(
                    f"cancelled while waiting for {label or 'fulfillment'}",
                    step=step,
                    resource=resource,
                )

            outcome.attempts = attempt
            try:
                done, value = probe()
            except Exception as exc:  # noqa: BLE001
                err = classify_provider_error(exc, step=step, resource=resource)
                if not isinstance(err, TransientError):
                    if err is exc:
                        raise
                    raise err from exc
                outcome.failures += 1
                outcome.last_error = err.message
                logger.warning(
                    "%s poll %d/%d failed: %s",
                    label, attempt, self.max_attempts, err.message,
                )
            else:
                outcome.last_value = value
                if done:
                    outcome.done = True
                    outcome.elapsed_seconds = self._clock() - start
                    logger.info(
                        "%s reached goal after %d attempt(s).", label, attempt,
                    )
                    return outcome
                logger.info(
                    "%s not ready (%d/%d): %s", label, attempt, self.max_attempts, value,
                )

            if attempt < self.max_attempts:
                self.ctx.heartbeat({
                    "label": label,
                    "attempt": attempt,
                    "max_attempts": self.max_attempts,
                    "last_value": outcome.last_value,
                })
                self.ctx.sleep(interval)

        outcome.elapsed_seconds = self._clock() - start
        return outcome


# ---------------------------------------------------------------------------
# Capacity fulfillment
# ---------------------------------------------------------------------------


def wait_for_fulfillment(
    count_healthy: Callable[[], int],
    desired: int,
    policy: WaitPolicy,
    ctx: Any,
    *,
    step: str = "",
    resource: str = "",
    clock: Callable[[], float] = time.monotonic,
) -> FulfillmentState:
    """Block until ``count_healthy() >= desired`` or the policy runs out.

    Returns the final :class:`FulfillmentState` on success.

    Raises:
        FulfillmentTimeout: Carrying the desired and last observed counts.
        ActivityCancelled: If the run is cancelled while waiting.
    """
    state = FulfillmentState(requested=desired)

    def probe() -> Tuple[bool, int]:
        healthy = count_healthy()
        state.healthy = healthy
        state.history.append(healthy)
        return healthy >= desired, healthy

    poller = BoundedPoller(policy, ctx, clock=clock)
    outcome = poller.run(
        probe, label=f"{resource or 'capacity'} fulfillment", step=step, resource=resource,
    )

    state.attempts = outcome.attempts
    state.failures = outcome.failures
    state.last_error = outcome.last_error

    if outcome.done:
        return state

    raise FulfillmentTimeout(
        f"{state.healthy}/{desired} healthy after {outcome.attempts} attempts "
        f"({policy.max_wait.total_seconds():.0f}s)",
        desired=desired,
        observed=state.healthy,
        attempts=outcome.attempts,
        step=step,
        resource=resource,
    )
