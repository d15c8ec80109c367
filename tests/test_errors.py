"""Tests for eks_provisioner.errors."""

from __future__ import annotations

from botocore.exceptions import EndpointConnectionError, NoCredentialsError

from eks_provisioner.errors import (
    ActivityCancelled,
    FailureKind,
    FatalError,
    FulfillmentTimeout,
    TransientError,
    classify_provider_error,
    error_code,
    is_transient,
)


class TestErrorCode:
    def test_client_error(self, client_error):
        assert error_code(client_error("AccessDenied")) == "AccessDenied"

    def test_plain_exception(self):
        assert error_code(RuntimeError("boom")) == ""


class TestIsTransient:
    def test_throttling(self, client_error):
        assert is_transient(client_error("ThrottlingException")) is True

    def test_access_denied(self, client_error):
        assert is_transient(client_error("AccessDenied")) is False

    def test_connection_error(self):
        exc = EndpointConnectionError(endpoint_url="https://eks.us-west-2.amazonaws.com")
        assert is_transient(exc) is True


class TestClassifyProviderError:
    def test_throttling_is_transient(self, client_error):
        err = classify_provider_error(
            client_error("Throttling", message="Rate exceeded"),
            step="CreateNetwork",
            resource="demo",
        )
        assert isinstance(err, TransientError)
        assert err.kind == FailureKind.TRANSIENT
        assert err.message == "Rate exceeded"
        assert err.step == "CreateNetwork"
        assert err.resource == "demo"
        assert err.details == {"code": "Throttling"}

    def test_validation_error_is_fatal(self, client_error):
        err = classify_provider_error(client_error("ValidationError"))
        assert isinstance(err, FatalError)
        assert err.details["code"] == "ValidationError"

    def test_no_credentials_is_fatal(self):
        err = classify_provider_error(NoCredentialsError())
        assert isinstance(err, FatalError)
        assert "credentials" in err.message

    def test_unknown_exception_is_fatal(self):
        err = classify_provider_error(KeyError("VpcId"))
        assert isinstance(err, FatalError)
        assert err.message.startswith("KeyError")

    def test_classified_passes_through_with_step(self):
        original = TransientError("slow")
        err = classify_provider_error(original, step="CreateSubnet")
        assert err is original
        assert err.step == "CreateSubnet"

    def test_existing_step_kept(self):
        original = FatalError("bad", step="CreateNetwork")
        err = classify_provider_error(original, step="Other")
        assert err.step == "CreateNetwork"


class TestExceptionTypes:
    def test_fulfillment_timeout_details(self):
        err = FulfillmentTimeout("1/3 healthy", desired=3, observed=1, attempts=24)
        assert err.kind == FailureKind.TIMED_OUT
        assert err.details == {"desired": 3, "observed": 1, "attempts": 24}
        assert (err.desired, err.observed, err.attempts) == (3, 1, 24)

    def test_cancelled_kind(self):
        assert ActivityCancelled("stop").kind == FailureKind.CANCELLED

    def test_str_includes_context(self):
        err = FatalError("denied", step="CreateIdentityRoles", resource="demo-iam")
        assert str(err) == "[Fatal] CreateIdentityRoles (demo-iam): denied"
