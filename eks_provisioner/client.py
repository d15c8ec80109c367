"""Client side of a provisioning run: start, attach, inspect, cancel.

A run is a Temporal workflow execution whose workflow ID is the
caller-supplied run ID.  Starting a run ID that already exists attaches to
it instead of starting a second one:

- running or completed: the existing execution is awaited (a completed run
  returns its recorded output immediately);
- failed, timed out or cancelled: a fresh execution starts under the same
  ID, and its already-completed steps come back ``AlreadySatisfied``.

The request's SHA-256 is kept in the execution memo so that a run ID cannot
be re-used for a different request.

Usage::

    client = await connect(settings.temporal)
    runs = RunClient(client, settings)
    handle = await runs.start(CLUSTER_WORKFLOW, "demo-1", request)
    summary = await runs.wait(handle)
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from temporalio.client import (
    Client,
    WorkflowExecutionStatus,
    WorkflowFailureError,
    WorkflowHandle,
    WorkflowQueryFailedError,
)
from temporalio.common import WorkflowIDReusePolicy
from temporalio.exceptions import (
    ActivityError,
    ApplicationError,
    CancelledError,
    ChildWorkflowError,
    TerminatedError,
    WorkflowAlreadyStartedError,
)
from temporalio.exceptions import TimeoutError as TemporalTimeoutError
from temporalio.service import RPCError, RPCStatusCode

from eks_provisioner.config.models import ProvisionerSettings, ProvisioningRequest
from eks_provisioner.errors import FailureKind
from eks_provisioner.workflows import (
    CLUSTER_WORKFLOW,
    INFRASTRUCTURE_WORKFLOW,
    WORKFLOWS,
    WorkflowProgress,
    infrastructure_workflow_id,
)

logger = logging.getLogger(__name__)

#: Memo key holding the SHA-256 of the run's request.
MEMO_REQUEST_DIGEST = "request_sha256"

QUERY_TIMEOUT = timedelta(seconds=5)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class RunState(str, Enum):
    """Lifecycle of one run, as reported to the operator."""

    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"
    CANCELLED = "Cancelled"

    @property
    def terminal(self) -> bool:
        return self != RunState.RUNNING


_STATUS_STATE = {
    WorkflowExecutionStatus.RUNNING: RunState.RUNNING,
    WorkflowExecutionStatus.CONTINUED_AS_NEW: RunState.RUNNING,
    WorkflowExecutionStatus.COMPLETED: RunState.SUCCEEDED,
    WorkflowExecutionStatus.FAILED: RunState.FAILED,
    WorkflowExecutionStatus.TERMINATED: RunState.FAILED,
    WorkflowExecutionStatus.TIMED_OUT: RunState.TIMED_OUT,
    WorkflowExecutionStatus.CANCELED: RunState.CANCELLED,
}

_KIND_STATE = {
    FailureKind.TIMED_OUT: RunState.TIMED_OUT,
    FailureKind.CANCELLED: RunState.CANCELLED,
}


def state_for(status: Optional[WorkflowExecutionStatus]) -> RunState:
    return _STATUS_STATE.get(status, RunState.RUNNING) if status else RunState.RUNNING


class RunFailure(BaseModel):
    """Why a run ended without a result.  ``message`` is never a traceback."""

    kind: FailureKind
    step: str = ""
    resource: str = ""
    message: str = ""
    details: Dict[str, Any] = Field(default_factory=dict)


class RunSummary(BaseModel):
    """State, completed steps and outcome of one run."""

    run_id: str
    workflow: str
    state: RunState
    started_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    progress: WorkflowProgress = Field(default_factory=WorkflowProgress)
    result: Optional[Dict[str, Any]] = None
    failure: Optional[RunFailure] = None

    @property
    def last_completed_step(self) -> str:
        return self.progress.last_completed_step

    def to_sorted_json(self, indent: int = 2) -> str:
        """Serialise with sorted keys for deterministic output."""
        return json.dumps(self.model_dump(mode="json"), indent=indent, sort_keys=True)


class RunConflictError(Exception):
    """The run ID already belongs to a different workflow or request."""


class UnknownRunError(LookupError):
    """No execution exists for the run ID."""


# ---------------------------------------------------------------------------
# Failure translation
# ---------------------------------------------------------------------------


def _application_failure(err: ApplicationError, step: str) -> RunFailure:
    info: Dict[str, Any] = {}
    if err.details and isinstance(err.details[0], dict):
        info = err.details[0]
    try:
        kind = FailureKind(err.type)
    except ValueError:
        kind = FailureKind.FATAL
    details = dict(info.get("details") or {})
    if kind == FailureKind.TRANSIENT:
        # Only reaches the run once retries are exhausted.
        kind = FailureKind.FATAL
        details["escalated_from"] = FailureKind.TRANSIENT.value
    return RunFailure(
        kind=kind,
        step=step or info.get("step", ""),
        resource=info.get("resource", ""),
        message=err.message,
        details=details,
    )


def failure_from(exc: BaseException) -> RunFailure:
    """Classify the exception a failed workflow handle raised.

    Walks the ``cause`` chain (workflow -> child workflow -> activity ->
    application error) and names the step as ``Child/ActivityId``.
    """
    path: List[str] = []
    current: BaseException = exc
    while True:
        if isinstance(current, ChildWorkflowError):
            path.append(current.workflow_type)
        elif isinstance(current, ActivityError):
            path.append(current.activity_id)
        cause = getattr(current, "cause", None)
        if cause is None:
            break
        current = cause
    step = "/".join(p for p in path if p)

    if isinstance(current, ApplicationError):
        return _application_failure(current, step)
    if isinstance(current, CancelledError):
        return RunFailure(kind=FailureKind.CANCELLED, step=step, message="run cancelled")
    if isinstance(current, TemporalTimeoutError):
        return RunFailure(
            kind=FailureKind.TIMED_OUT,
            step=step,
            message=current.message or "timeout exceeded",
        )
    if isinstance(current, TerminatedError):
        return RunFailure(kind=FailureKind.FATAL, step=step, message="run terminated")
    return RunFailure(kind=FailureKind.FATAL, step=step, message=str(current) or type(current).__name__)


def request_digest(request: ProvisioningRequest) -> str:
    return hashlib.sha256(request.model_dump_json().encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class RunClient:
    """Run operations against one Temporal namespace and task queue."""

    def __init__(self, client: Client, settings: ProvisionerSettings) -> None:
        self.client = client
        self.settings = settings

    async def start(
        self, workflow_name: str, run_id: str, request: ProvisioningRequest,
    ) -> WorkflowHandle:
        """Start *workflow_name* as *run_id*, or attach to the existing run.

        Raises:
            RunConflictError: If *run_id* belongs to another workflow or request.
        """
        definition = WORKFLOWS[workflow_name]
        digest = request_digest(request)
        try:
            handle = await self.client.start_workflow(
                definition.run,
                request,
                id=run_id,
                task_queue=self.settings.temporal.task_queue,
                execution_timeout=self.settings.execution_timeout,
                id_reuse_policy=WorkflowIDReusePolicy.ALLOW_DUPLICATE_FAILED_ONLY,
                memo={MEMO_REQUEST_DIGEST: digest},
            )
            logger.info("Started %s as run %s", workflow_name, run_id)
            return handle
        except WorkflowAlreadyStartedError:
            pass

        handle = self.client.get_workflow_handle_for(definition.run, run_id)
        desc = await handle.describe()
        if desc.workflow_type != workflow_name:
            raise RunConflictError(
                f"run {run_id} is a {desc.workflow_type}, not a {workflow_name}"
            )
        existing = await desc.memo_value(MEMO_REQUEST_DIGEST, "")
        if existing and existing != digest:
            raise RunConflictError(
                f"run {run_id} was started with a different request; "
                "use a new run ID for a changed request"
            )
        logger.info("Attaching to run %s (%s)", run_id, desc.status.name if desc.status else "?")
        return handle

    async def wait(self, handle: WorkflowHandle) -> RunSummary:
        """Await *handle* and summarise how the run ended."""
        result: Optional[Dict[str, Any]] = None
        failure: Optional[RunFailure] = None
        try:
            output = await handle.result()
            result = output.model_dump(mode="json") if isinstance(output, BaseModel) else output
        except WorkflowFailureError as exc:
            failure = failure_from(exc)
        return await self.summary(handle.id, result=result, failure=failure)

    async def summary(
        self,
        run_id: str,
        *,
        result: Optional[Dict[str, Any]] = None,
        failure: Optional[RunFailure] = None,
    ) -> RunSummary:
        """Describe *run_id*, including its completed steps and outcome.

        Raises:
            UnknownRunError: If no execution exists for *run_id*.
        """
        handle = self.client.get_workflow_handle(run_id)
        desc = await self._describe(handle, run_id)
        state = state_for(desc.status)

        if state.terminal and result is None and failure is None:
            try:
                result = await handle.result()
            except WorkflowFailureError as exc:
                failure = failure_from(exc)
        if failure is not None and state == RunState.FAILED:
            state = _KIND_STATE.get(failure.kind, state)

        return RunSummary(
            run_id=run_id,
            workflow=desc.workflow_type,
            state=state,
            started_at=desc.start_time,
            closed_at=desc.close_time,
            progress=await self.progress(run_id, desc.workflow_type),
            result=result if state == RunState.SUCCEEDED else None,
            failure=failure,
        )

    async def progress(self, run_id: str, workflow_name: str) -> WorkflowProgress:
        """Completed steps of *run_id*, including its infrastructure child.

        Steps of the child are listed first as ``CreateInfrastructureWorkflow/<step>``.
        An execution no worker can answer for reports no steps.
        """
        own = await self._query_progress(run_id)
        if workflow_name != CLUSTER_WORKFLOW:
            return own

        child = await self._query_progress(infrastructure_workflow_id(run_id))
        merged = WorkflowProgress()
        for key in child.completed_steps:
            merged.completed_steps.append(f"{INFRASTRUCTURE_WORKFLOW}/{key}")
            merged.outputs[f"{INFRASTRUCTURE_WORKFLOW}/{key}"] = child.outputs.get(key, {})
        merged.running_steps.extend(
            f"{INFRASTRUCTURE_WORKFLOW}/{key}" for key in child.running_steps
        )
        for key in own.completed_steps:
            if key == INFRASTRUCTURE_WORKFLOW:
                continue
            merged.completed_steps.append(key)
            merged.outputs[key] = own.outputs.get(key, {})
        merged.running_steps.extend(own.running_steps)
        return merged

    async def list_runs(self) -> List[RunSummary]:
        """Top-level runs of both workflows, newest first."""
        query = " OR ".join(f"WorkflowType = '{name}'" for name in sorted(WORKFLOWS))
        runs: List[RunSummary] = []
        async for execution in self.client.list_workflows(query):
            if execution.parent_id:
                continue
            runs.append(RunSummary(
                run_id=execution.id,
                workflow=execution.workflow_type,
                state=state_for(execution.status),
                started_at=execution.start_time,
                closed_at=execution.close_time,
            ))
        return runs

    async def cancel(self, run_id: str) -> RunState:
        """Request cancellation of *run_id* if it is running.

        Returns the state the run was in when the request was made; only a
        ``Running`` run is actually cancelled.

        Raises:
            UnknownRunError: If no execution exists for *run_id*.
        """
        handle = self.client.get_workflow_handle(run_id)
        state = state_for((await self._describe(handle, run_id)).status)
        if state == RunState.RUNNING:
            await handle.cancel()
            logger.info("Cancellation requested for run %s", run_id)
        return state

    # -- helpers --------------------------------------------------------

    @staticmethod
    async def _describe(handle: WorkflowHandle, run_id: str) -> Any:
        try:
            return await handle.describe()
        except RPCError as exc:
            if exc.status == RPCStatusCode.NOT_FOUND:
                raise UnknownRunError(f"Unknown run: {run_id}") from exc
            raise

    async def _query_progress(self, workflow_id: str) -> WorkflowProgress:
        handle = self.client.get_workflow_handle(workflow_id)
        try:
            return await handle.query(
                "progress", result_type=WorkflowProgress, rpc_timeout=QUERY_TIMEOUT,
            )
        except (RPCError, WorkflowQueryFailedError) as exc:
            logger.debug("No progress for %s: %s", workflow_id, exc)
            return WorkflowProgress()
