"""Composition root: build activities and register them with a Temporal worker.

Everything is constructed once at process start from
:class:`~eks_provisioner.config.models.ProvisionerSettings`; the returned
worker holds the only name -> implementation mapping.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional

from temporalio.client import Client
from temporalio.worker import UnsandboxedWorkflowRunner, Worker

from eks_provisioner.activities import (
    Activity,
    Bootstrap,
    CreateCapacityGroup,
    CreateClusterCredentials,
    CreateControlPlane,
    CreateIdentityRoles,
    CreateNetwork,
    CreateSubnet,
    DescribeNetworkConfig,
    DescribeSubnets,
    UploadAccessKey,
)
from eks_provisioner.aws.session import SessionFactory
from eks_provisioner.config.models import ProvisionerSettings
from eks_provisioner.runtime.temporal import as_temporal_activity
from eks_provisioner.templates.provider import TemplateProvider
from eks_provisioner.workflows import WORKFLOWS

logger = logging.getLogger(__name__)


def build_activities(
    settings: ProvisionerSettings,
    sessions: SessionFactory,
    templates: TemplateProvider,
) -> List[Activity]:
    """Construct all ten activities with their dependencies."""
    return [
        CreateNetwork(sessions, templates),
        CreateSubnet(sessions, templates),
        DescribeSubnets(sessions),
        CreateIdentityRoles(sessions, templates),
        UploadAccessKey(sessions),
        DescribeNetworkConfig(sessions),
        CreateControlPlane(sessions, wait=settings.control_plane_wait),
        CreateCapacityGroup(sessions, templates, wait=settings.capacity_wait),
        CreateClusterCredentials(sessions),
        Bootstrap(sessions, templates, kubectl=settings.kubectl_path),
    ]


def temporal_activities(activities: List[Activity]) -> List[Callable[[Any], Any]]:
    """Expose *activities* as Temporal activity functions, rejecting name clashes."""
    names = [a.name for a in activities]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ValueError(f"duplicate activity name(s): {', '.join(dupes)}")
    return [as_temporal_activity(a) for a in activities]


def build_worker(
    client: Client,
    settings: ProvisionerSettings,
    *,
    sessions: Optional[SessionFactory] = None,
    templates: Optional[TemplateProvider] = None,
) -> Worker:
    """Return a :class:`Worker` serving both workflows and all activities.

    Activities are synchronous and run on a thread pool of
    ``settings.max_workers`` threads.  Workflows run unsandboxed: they import
    boto3 and pydantic through the activity modules, and only ever touch
    deterministic state.
    """
    sessions = sessions or SessionFactory()
    templates = templates or TemplateProvider()
    activities = build_activities(settings, sessions, templates)

    logger.debug(
        "Registering workflows %s and activities %s on queue %s",
        sorted(WORKFLOWS), [a.name for a in activities], settings.temporal.task_queue,
    )
    return Worker(
        client,
        task_queue=settings.temporal.task_queue,
        workflows=list(WORKFLOWS.values()),
        activities=temporal_activities(activities),
        activity_executor=ThreadPoolExecutor(
            max_workers=settings.max_workers, thread_name_prefix="activity",
        ),
        max_concurrent_activities=settings.max_workers,
        workflow_runner=UnsandboxedWorkflowRunner(),
    )
