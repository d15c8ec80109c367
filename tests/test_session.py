"""Tests for eks_provisioner.aws.session."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ProfileNotFound

from eks_provisioner.aws.session import SessionFactory, parse_secret_ref
from eks_provisioner.errors import FatalError, TransientError


def _builder(secret_string=None, secret_error=None, sts_error=None):
    """Return ``(builder, calls)``; the builder produces MagicMock sessions."""
    calls = []

    def build(**kwargs):
        calls.append(kwargs)
        session = MagicMock()
        sts = MagicMock()
        if sts_error is not None:
            sts.get_caller_identity.side_effect = sts_error
        else:
            sts.get_caller_identity.return_value = {
                "Account": "123456789012",
                "Arn": "arn:aws:iam::123456789012:user/ops",
            }
        sm = MagicMock()
        if secret_error is not None:
            sm.get_secret_value.side_effect = secret_error
        else:
            sm.get_secret_value.return_value = {"SecretString": secret_string}
        session.client.side_effect = lambda name, **_: {"sts": sts, "secretsmanager": sm}[name]
        return session

    return build, calls


class TestParseSecretRef:
    def test_env(self):
        assert parse_secret_ref("env:") == ("env", "")

    def test_profile(self):
        assert parse_secret_ref("profile:ops") == ("profile", "ops")

    def test_secrets_manager(self):
        assert parse_secret_ref("secretsmanager:prod/aws") == ("secretsmanager", "prod/aws")

    @pytest.mark.parametrize("ref", ["", "ops", "vault:x", "profile:"])
    def test_invalid(self, ref):
        with pytest.raises(FatalError):
            parse_secret_ref(ref)


class TestSessionFactory:
    def test_env_resolves_identity(self):
        build, calls = _builder()
        aws = SessionFactory(session_builder=build).resolve("env:", "us-west-2")
        assert calls == [{"region_name": "us-west-2"}]
        assert aws.account_id == "123456789012"
        assert aws.caller_arn.endswith("user/ops")
        assert aws.region == "us-west-2"

    def test_profile(self):
        build, calls = _builder()
        SessionFactory(session_builder=build).resolve("profile:ops", "eu-west-1")
        assert calls == [{"profile_name": "ops", "region_name": "eu-west-1"}]

    def test_missing_profile_is_fatal(self):
        def build(**kwargs):
            raise ProfileNotFound(profile=kwargs["profile_name"])

        with pytest.raises(FatalError, match="not found"):
            SessionFactory(session_builder=build).resolve("profile:ghost", "us-west-2")

    def test_secret_credentials(self):
        secret = json.dumps({
            "aws_access_key_id": "AKIA123",
            "aws_secret_access_key": "s3cr3t",
            "aws_session_token": "tok",
        })
        build, calls = _builder(secret_string=secret)
        SessionFactory(session_builder=build).resolve("secretsmanager:prod", "us-west-2")
        assert calls[1] == {
            "region_name": "us-west-2",
            "aws_access_key_id": "AKIA123",
            "aws_secret_access_key": "s3cr3t",
            "aws_session_token": "tok",
        }

    def test_secret_missing_keys_is_fatal(self):
        build, _ = _builder(secret_string=json.dumps({"aws_access_key_id": "AKIA"}))
        with pytest.raises(FatalError, match="aws_secret_access_key"):
            SessionFactory(session_builder=build).resolve("secretsmanager:prod", "us-west-2")

    def test_secret_not_json_is_fatal(self):
        build, _ = _builder(secret_string="not json")
        with pytest.raises(FatalError, match="not valid JSON"):
            SessionFactory(session_builder=build).resolve("secretsmanager:prod", "us-west-2")

    def test_secret_throttled_is_transient(self, client_error):
        build, _ = _builder(secret_error=client_error("ThrottlingException"))
        with pytest.raises(TransientError):
            SessionFactory(session_builder=build).resolve("secretsmanager:prod", "us-west-2")

    def test_identity_denied_is_fatal(self, client_error):
        build, _ = _builder(sts_error=client_error("InvalidClientTokenId"))
        with pytest.raises(FatalError):
            SessionFactory(session_builder=build).resolve("env:", "us-west-2")

    def test_skip_identity(self):
        build, _ = _builder(sts_error=RuntimeError("should not be called"))
        aws = SessionFactory(session_builder=build, verify_identity=False).resolve(
            "env:", "us-west-2",
        )
        assert aws.account_id == ""

    def test_fresh_session_per_call(self):
        build, calls = _builder()
        factory = SessionFactory(session_builder=build)
        first = factory.resolve("env:", "us-west-2")
        second = factory.resolve("env:", "us-west-2")
        assert first.session is not second.session
        assert len(calls) == 2
