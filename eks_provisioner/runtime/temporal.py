"""Temporal plumbing: client connection and the activity adapter.

Activities are plain :class:`~eks_provisioner.activities.base.Activity`
objects.  :func:`as_temporal_activity` exposes one as a synchronous
``@activity.defn`` function that runs on the worker's thread pool, and maps
its classified failures onto Temporal's:

=====================  ==========================================
``FailureKind``        Raised to Temporal as
=====================  ==========================================
``Transient``          ``ApplicationError`` (retryable)
``Fatal``              ``ApplicationError`` (``non_retryable``)
``TimedOut``           ``ApplicationError`` (``non_retryable``)
``Cancelled``          ``temporalio.exceptions.CancelledError``
=====================  ==========================================

The ``ApplicationError.type`` is the ``FailureKind`` value, and its single
detail carries ``step``, ``resource`` and the diagnostic ``details``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable

from temporalio import activity
from temporalio.client import Client
from temporalio.contrib.pydantic import pydantic_data_converter
from temporalio.exceptions import ApplicationError, CancelledError

from eks_provisioner.config.models import TemporalSettings
from eks_provisioner.errors import (
    ActivityCancelled,
    FailureKind,
    ProvisioningError,
    TransientError,
)
from eks_provisioner.runtime.context import ActivityContext

if TYPE_CHECKING:
    from eks_provisioner.activities.base import Activity

logger = logging.getLogger(__name__)

#: Failure types the workflows never retry.
NON_RETRYABLE_TYPES = [
    FailureKind.FATAL.value,
    FailureKind.TIMED_OUT.value,
    FailureKind.CANCELLED.value,
]

#: Data converter shared by clients, workers and test environments so that
#: pydantic models cross the wire as JSON and come back typed.
DATA_CONVERTER = pydantic_data_converter


async def connect(settings: TemporalSettings) -> Client:
    """Connect to the Temporal frontend described by *settings*.

    Raises:
        TransientError: If the frontend cannot be reached.
    """
    logger.info("Connecting to Temporal at %s (namespace %s)", settings.target, settings.namespace)
    try:
        return await Client.connect(
            settings.target,
            namespace=settings.namespace,
            data_converter=DATA_CONVERTER,
        )
    except RuntimeError as exc:
        raise TransientError(
            f"cannot reach Temporal at {settings.target}: {exc}",
            resource=settings.target,
        ) from exc


def to_application_error(err: ProvisioningError) -> ApplicationError:
    """Translate a classified failure into the error Temporal records."""
    return ApplicationError(
        err.message,
        {"step": err.step, "resource": err.resource, "details": err.details},
        type=err.kind.value,
        non_retryable=err.kind != FailureKind.TRANSIENT,
    )


def as_temporal_activity(impl: "Activity") -> Callable[[Any], Any]:
    """Wrap *impl* as a synchronous Temporal activity named ``impl.name``."""

    def run(arg: Any) -> Any:
        ctx = ActivityContext.current()
        try:
            return impl(ctx, arg)
        except ProvisioningError as err:
            if isinstance(err, ActivityCancelled) or activity.is_cancelled():
                logger.info("%s cancelled during %s", impl.name, ctx.step)
                raise CancelledError(err.message) from err
            logger.warning("%s attempt %d failed: %s", impl.name, ctx.attempt, err)
            raise to_application_error(err) from err

    run.__name__ = impl.name
    run.__qualname__ = impl.name
    return activity.defn(name=impl.name)(run)
