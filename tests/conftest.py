"""Shared fixtures: fake AWS sessions, activity contexts, requests."""

from __future__ import annotations

from typing import Dict, List
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from eks_provisioner.aws.session import AWSSession
from eks_provisioner.config.models import NodePoolSpec, ProvisioningRequest
from eks_provisioner.runtime.context import ActivityContext


def client_error(code: str, operation: str = "Operation", message: str = "") -> ClientError:
    """Build a botocore ClientError with the given error *code*."""
    return ClientError(
        {"Error": {"Code": code, "Message": message or code}},
        operation,
    )


class FakeSessions:
    """Stands in for :class:`SessionFactory`; one MagicMock client per service."""

    def __init__(self) -> None:
        self.clients: Dict[str, MagicMock] = {}
        self.resolved: List[tuple] = []
        self.raw = MagicMock()
        self.raw.client.side_effect = self.client

    def client(self, service: str, **_: object) -> MagicMock:
        if service not in self.clients:
            self.clients[service] = MagicMock(name=service)
        return self.clients[service]

    def resolve(self, secret_ref: str, region: str) -> AWSSession:
        self.resolved.append((secret_ref, region))
        return AWSSession(
            region=region,
            account_id="123456789012",
            caller_arn="arn:aws:iam::123456789012:user/provisioner",
            secret_ref=secret_ref,
            _session=self.raw,
        )


@pytest.fixture(name="client_error")
def client_error_fixture():
    """The :func:`client_error` builder, for tests that need one."""
    return client_error


@pytest.fixture()
def sessions() -> FakeSessions:
    return FakeSessions()


@pytest.fixture()
def sleeps() -> List[float]:
    return []


@pytest.fixture()
def ctx(sleeps: List[float]) -> ActivityContext:
    """Activity context whose sleeps are recorded instead of slept."""
    return ActivityContext(
        run_id="run-1",
        activity="Test",
        step="Test",
        sleep_fn=sleeps.append,
    )


class WorkerLost(BaseException):
    """Stands in for the worker process dying in the middle of an activity."""


@pytest.fixture(name="worker_lost")
def worker_lost_fixture():
    return WorkerLost


@pytest.fixture()
def lost_ctx() -> ActivityContext:
    """Context of an attempt whose worker dies at its first sleep."""

    def die(_seconds: float) -> None:
        raise WorkerLost()

    return ActivityContext(run_id="run-1", activity="Test", step="Test", sleep_fn=die)


@pytest.fixture()
def retry_ctx(sleeps: List[float]) -> ActivityContext:
    """The next attempt of the same step after the worker was lost."""
    return ActivityContext(
        run_id="run-1",
        activity="Test",
        step="Test",
        attempt=2,
        sleep_fn=sleeps.append,
    )


@pytest.fixture()
def request_model() -> ProvisioningRequest:
    return ProvisioningRequest(
        organization="acme",
        cluster_name="demo",
        region="us-west-2",
        node_pools=[
            NodePoolSpec(
                name="general",
                instance_type="m5.large",
                min_count=1,
                max_count=3,
                desired_count=2,
            ),
        ],
    )
