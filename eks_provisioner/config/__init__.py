"""Request models, policies, and settings loading."""

from eks_provisioner.config.loader import load_request, load_settings
from eks_provisioner.config.models import (
    CAPACITY_WAIT,
    CLUSTER_TAG_KEY,
    CONTROL_PLANE_WAIT,
    HEARTBEAT_TIMEOUT,
    ROLE_TAG_KEY,
    NodePoolSpec,
    ProvisionerSettings,
    ProvisioningRequest,
    SubnetSpec,
    TemporalSettings,
    WaitPolicy,
)

__all__ = [
    "CAPACITY_WAIT",
    "CLUSTER_TAG_KEY",
    "CONTROL_PLANE_WAIT",
    "HEARTBEAT_TIMEOUT",
    "NodePoolSpec",
    "ProvisionerSettings",
    "ProvisioningRequest",
    "ROLE_TAG_KEY",
    "SubnetSpec",
    "TemporalSettings",
    "WaitPolicy",
    "load_request",
    "load_settings",
]
