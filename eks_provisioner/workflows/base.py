"""Step bookkeeping shared by both workflows.

Workflows schedule activities by registered name and never call a provider
API themselves.  Every step goes through :meth:`StepRecorder.step`, which
uses the step key as the Temporal activity ID and records the step's output
for the ``progress`` query.
"""

from __future__ import annotations

from typing import Any, Type, TypeVar

from pydantic import BaseModel
from temporalio import workflow

with workflow.unsafe.imports_passed_through():
    from eks_provisioner.workflows.models import WorkflowProgress
    from eks_provisioner.workflows.options import activity_options

ResultT = TypeVar("ResultT", bound=BaseModel)


class StepRecorder:
    """Mixin holding a workflow's :class:`WorkflowProgress`."""

    def __init__(self) -> None:
        self._progress = WorkflowProgress()

    async def step(
        self,
        name: str,
        arg: BaseModel,
        result_type: Type[ResultT],
        *,
        key: str = "",
    ) -> ResultT:
        """Run activity *name* as step *key* (defaults to *name*)."""
        key = key or name
        self._progress.running_steps.append(key)
        try:
            result = await workflow.execute_activity(
                name,
                arg,
                activity_id=key,
                result_type=result_type,
                **activity_options(name),
            )
        finally:
            self._progress.running_steps.remove(key)
        self.record(key, result)
        return result

    def record(self, key: str, output: Any) -> None:
        self._progress.completed_steps.append(key)
        if isinstance(output, BaseModel):
            output = output.model_dump(mode="json")
        self._progress.outputs[key] = output
        workflow.logger.info("Step %s completed", key)
