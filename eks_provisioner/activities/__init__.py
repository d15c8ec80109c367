"""Activities: idempotent units of provider work invoked by workflows."""

from eks_provisioner.activities.base import Activity
from eks_provisioner.activities.bootstrap import Bootstrap
from eks_provisioner.activities.capacity import CreateCapacityGroup
from eks_provisioner.activities.control_plane import CreateControlPlane
from eks_provisioner.activities.iam import CreateClusterCredentials, CreateIdentityRoles
from eks_provisioner.activities.keys import UploadAccessKey
from eks_provisioner.activities.network import (
    CreateNetwork,
    CreateSubnet,
    DescribeNetworkConfig,
    DescribeSubnets,
)

__all__ = [
    "Activity",
    "Bootstrap",
    "CreateCapacityGroup",
    "CreateClusterCredentials",
    "CreateControlPlane",
    "CreateIdentityRoles",
    "CreateNetwork",
    "CreateSubnet",
    "DescribeNetworkConfig",
    "DescribeSubnets",
    "UploadAccessKey",
]
