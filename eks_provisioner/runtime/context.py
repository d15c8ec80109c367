"""The activity's view of the worker it runs on.

:class:`ActivityContext` is the only thing an activity knows about Temporal:
it heartbeats, checks for cancellation, and sleeps in a way that wakes up as
soon as the activity is cancelled.  Inside a worker it is built from
:func:`temporalio.activity.info`; tests construct it directly.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Optional

from temporalio import activity

from eks_provisioner.errors import ActivityCancelled

logger = logging.getLogger(__name__)


class ActivityContext:
    """Per-invocation activity context.

    Args:
        run_id: Workflow ID the invocation belongs to.
        activity: Registered activity name.
        step: Activity ID of the step being executed.
        attempt: 1-based attempt number.
        cancel_event: Set when the invocation is cancelled in-process.
        cancel_probe: Extra cancellation check, e.g. the worker's cancel flag.
        heartbeat_sink: Receives ``(step, details)`` on each heartbeat.
        sleep_fn: Overrides the cancellable sleep (tests).
        wait_fn: Blocks up to a timeout, returning early on cancellation.
    """

    def __init__(
        self,
        *,
        run_id: str = "",
        activity: str = "",
        step: str = "",
        attempt: int = 1,
        cancel_event: Optional[threading.Event] = None,
        cancel_probe: Optional[Callable[[], bool]] = None,
        heartbeat_sink: Optional[Callable[[str, Dict[str, Any]], None]] = None,
        sleep_fn: Optional[Callable[[float], None]] = None,
        wait_fn: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.run_id = run_id
        self.activity = activity
        self.step = step or activity
        self.attempt = attempt
        self._cancel_event = cancel_event or threading.Event()
        self._cancel_probe = cancel_probe
        self._heartbeat_sink = heartbeat_sink
        self._sleep_fn = sleep_fn
        self._wait_fn = wait_fn
        self.heartbeats = 0
        self.last_heartbeat: Dict[str, Any] = {}

    @classmethod
    def current(cls) -> "ActivityContext":
        """Build the context of the activity running on this thread.

        Must be called from inside a synchronous Temporal activity.
        """
        info = activity.info()
        return cls(
            run_id=info.workflow_id,
            activity=info.activity_type,
            step=info.activity_id,
            attempt=info.attempt,
            cancel_probe=activity.is_cancelled,
            heartbeat_sink=lambda _step, details: activity.heartbeat(details),
            wait_fn=lambda seconds: activity.wait_for_cancelled_sync(timeout=seconds),
        )

    def is_cancelled(self) -> bool:
        if self._cancel_event.is_set():
            return True
        if self._cancel_probe is not None and self._cancel_probe():
            self._cancel_event.set()
            return True
        return False

    def heartbeat(self, details: Optional[Dict[str, Any]] = None) -> None:
        """Report liveness; raises :class:`ActivityCancelled` when cancelled."""
        self.heartbeats += 1
        self.last_heartbeat = dict(details or {})
        if self._heartbeat_sink is not None:
            self._heartbeat_sink(self.step, self.last_heartbeat)
        if self.is_cancelled():
            raise ActivityCancelled(
                "run cancelled", step=self.step,
            )

    def sleep(self, seconds: float) -> None:
        """Suspend for *seconds*, returning early if the run is cancelled."""
        if self._sleep_fn is not None:
            self._sleep_fn(seconds)
            return
        if self._wait_fn is not None:
            self._wait_fn(seconds)
            return
        self._cancel_event.wait(timeout=seconds)
