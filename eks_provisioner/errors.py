"""Failure taxonomy and the provider-error adapter.

Every error that crosses an activity boundary is one of the
:class:`ProvisioningError` subclasses below.  Raw ``botocore`` exceptions are
converted by :func:`classify_provider_error` at the point where the AWS call
is made, so workflows only ever see a :class:`FailureKind` plus a message and
the step/resource it happened on.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ReadTimeoutError,
    WaiterError,
)


# ---------------------------------------------------------------------------
# Kinds
# ---------------------------------------------------------------------------


class FailureKind(str, Enum):
    """Classification attached to every activity failure."""

    FATAL = "Fatal"
    TRANSIENT = "Transient"
    TIMED_OUT = "TimedOut"
    CANCELLED = "Cancelled"


class StepStatus(str, Enum):
    """Successful outcome of an activity."""

    SUCCEEDED = "Succeeded"
    ALREADY_SATISFIED = "AlreadySatisfied"


#: AWS error codes that are worth retrying.
TRANSIENT_ERROR_CODES = frozenset({
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "RequestLimitExceeded",
    "RequestThrottled",
    "TooManyRequestsException",
    "SlowDown",
    "ServiceUnavailable",
    "ServiceUnavailableException",
    "ServerException",
    "InternalError",
    "InternalFailure",
    "InternalServiceError",
    "RequestTimeout",
    "RequestTimeoutException",
    "PriorRequestNotComplete",
    "LimitExceededException",
})


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ProvisioningError(Exception):
    """Base class for classified failures.

    Attributes:
        kind: The :class:`FailureKind` of the failure.
        message: Human-readable reason (no stack traces).
        step: Activity or workflow step the failure belongs to.
        resource: Provider resource the failure concerns, if any.
        details: Extra diagnostic context (counts, statuses, codes).
    """

    kind: FailureKind = FailureKind.FATAL

    def __init__(
        self,
        message: str,
        *,
        step: str = "",
        resource: str = "",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.step = step
        self.resource = resource
        self.details: Dict[str, Any] = dict(details or {})

    def with_step(self, step: str) -> "ProvisioningError":
        """Attach *step* if the error does not carry one yet."""
        if not self.step:
            self.step = step
        return self

    def __str__(self) -> str:
        prefix = f"[{self.kind.value}]"
        if self.step:
            prefix += f" {self.step}"
        if self.resource:
            prefix += f" ({self.resource})"
        return f"{prefix}: {self.message}"


class FatalError(ProvisioningError):
    """Bad input, bad template, permission denial: never retried."""

    kind = FailureKind.FATAL


class TransientError(ProvisioningError):
    """Throttling, timeouts, connectivity: retried by the activity retry policy."""

    kind = FailureKind.TRANSIENT


class FulfillmentTimeout(ProvisioningError):
    """A bounded wait ran out before the goal was observed."""

    kind = FailureKind.TIMED_OUT

    def __init__(
        self,
        message: str,
        *,
        desired: int = 0,
        observed: int = 0,
        attempts: int = 0,
        step: str = "",
        resource: str = "",
    ) -> None:
        super().__init__(
            message,
            step=step,
            resource=resource,
            details={"desired": desired, "observed": observed, "attempts": attempts},
        )
        self.desired = desired
        self.observed = observed
        self.attempts = attempts


class ActivityCancelled(ProvisioningError):
    """The run was cancelled by its caller."""

    kind = FailureKind.CANCELLED


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


def error_code(exc: BaseException) -> str:
    """Extract AWS error code from a botocore ClientError (or return '')."""
    resp = getattr(exc, "response", None)
    if resp and isinstance(resp, dict):
        return resp.get("Error", {}).get("Code", "")
    return ""


def _error_message(exc: BaseException) -> str:
    resp = getattr(exc, "response", None)
    if resp and isinstance(resp, dict):
        msg = resp.get("Error", {}).get("Message", "")
        if msg:
            return msg
    return str(exc)


def is_transient(exc: BaseException) -> bool:
    """Return *True* if *exc* is a retryable provider error."""
    if isinstance(exc, ClientError):
        return error_code(exc) in TRANSIENT_ERROR_CODES
    if isinstance(
        exc,
        (
            EndpointConnectionError,
            ConnectTimeoutError,
            ReadTimeoutError,
            BotoConnectionError,
        ),
    ):
        return True
    return False


def classify_provider_error(
    exc: BaseException,
    *,
    step: str = "",
    resource: str = "",
) -> ProvisioningError:
    """Convert a provider exception into a :class:`ProvisioningError`.

    Already-classified errors pass through (with *step* filled in if absent).
    ``ClientError`` codes in :data:`TRANSIENT_ERROR_CODES` and connection /
    timeout errors become :class:`TransientError`; credential errors and all
    other client errors become :class:`FatalError`.
    """
    if isinstance(exc, ProvisioningError):
        return exc.with_step(step)

    if isinstance(exc, ClientError):
        code = error_code(exc)
        details = {"code": code}
        if code in TRANSIENT_ERROR_CODES:
            return TransientError(
                _error_message(exc), step=step, resource=resource, details=details,
            )
        return FatalError(
            _error_message(exc), step=step, resource=resource, details=details,
        )

    if is_transient(exc):
        return TransientError(str(exc), step=step, resource=resource)

    if isinstance(exc, (NoCredentialsError, PartialCredentialsError)):
        return FatalError(
            f"AWS credentials unavailable: {exc}", step=step, resource=resource,
        )

    if isinstance(exc, WaiterError):
        return FatalError(
            f"Waiter failed: {exc}", step=step, resource=resource,
        )

    if isinstance(exc, BotoCoreError):
        return FatalError(str(exc), step=step, resource=resource)

    return FatalError(
        f"{type(exc).__name__}: {exc}", step=step, resource=resource,
    )
