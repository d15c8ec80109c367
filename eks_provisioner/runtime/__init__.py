"""Temporal runtime boundary: activity context, adapter and client connection."""

from eks_provisioner.runtime.context import ActivityContext
from eks_provisioner.runtime.temporal import (
    DATA_CONVERTER,
    NON_RETRYABLE_TYPES,
    as_temporal_activity,
    connect,
    to_application_error,
)

__all__ = [
    "ActivityContext",
    "DATA_CONVERTER",
    "NON_RETRYABLE_TYPES",
    "as_temporal_activity",
    "connect",
    "to_application_error",
]
