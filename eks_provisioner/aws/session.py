"""Session factory: secret reference → authenticated AWS session.

Wraps boto3 session creation and STS ``get-caller-identity`` into a single
:class:`AWSSession` that an activity invocation owns for its whole lifetime.
Sessions are never cached or shared between activities: scope, expiry and
even the account can differ per call.

Secret reference formats::

    env:                          ambient credential chain (env vars, instance role)
    profile:<name>                named profile from ~/.aws/config
    secretsmanager:<secret-id>    JSON secret holding access keys

A Secrets Manager secret must contain ``aws_access_key_id`` and
``aws_secret_access_key`` and may contain ``aws_session_token``.

Failures are classified: a missing or malformed secret / profile is
:class:`~eks_provisioner.errors.FatalError`; an unreachable resolver is
:class:`~eks_provisioner.errors.TransientError`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, ProfileNotFound

from eks_provisioner.errors import FatalError, classify_provider_error

logger = logging.getLogger(__name__)

SCHEME_ENV = "env"
SCHEME_PROFILE = "profile"
SCHEME_SECRETS_MANAGER = "secretsmanager"

_REQUIRED_SECRET_KEYS = ("aws_access_key_id", "aws_secret_access_key")


# ---------------------------------------------------------------------------
# Reference parsing
# ---------------------------------------------------------------------------


def parse_secret_ref(secret_ref: str) -> tuple[str, str]:
    """Split ``scheme:value`` into ``(scheme, value)``.

    Raises :class:`FatalError` on unknown schemes or missing values.
    """
    scheme, sep, value = (secret_ref or "").partition(":")
    if not sep:
        raise FatalError(
            f"secret reference '{secret_ref}' must look like <scheme>:<value>",
            resource=secret_ref,
        )
    if scheme not in (SCHEME_ENV, SCHEME_PROFILE, SCHEME_SECRETS_MANAGER):
        raise FatalError(
            f"unsupported secret reference scheme '{scheme}'", resource=secret_ref,
        )
    if scheme != SCHEME_ENV and not value:
        raise FatalError(
            f"secret reference '{secret_ref}' has no {scheme} name", resource=secret_ref,
        )
    return scheme, value


# ---------------------------------------------------------------------------
# AWSSession
# ---------------------------------------------------------------------------


@dataclass
class AWSSession:
    """Authenticated session plus the identity it resolved to.

    Attributes:
        region: AWS region the session is scoped to.
        account_id: 12-digit AWS account ID.
        caller_arn: Full ARN from ``sts:GetCallerIdentity``.
        secret_ref: Reference the session was resolved from.
    """

    region: str
    account_id: str = ""
    caller_arn: str = ""
    secret_ref: str = ""
    _session: Any = field(default=None, repr=False, compare=False)

    @property
    def session(self) -> boto3.Session:
        """Return the underlying :class:`boto3.Session`."""
        return self._session

    def client(self, service: str, **kwargs: Any) -> Any:
        """Create a boto3 client for *service*."""
        return self._session.client(service, **kwargs)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


class SessionFactory:
    """Resolve secret references into fresh :class:`AWSSession` objects.

    *session_builder* creates raw boto3 sessions and is injectable for tests;
    it receives the same keyword arguments as :class:`boto3.Session`.
    """

    def __init__(
        self,
        *,
        session_builder: Optional[Callable[..., Any]] = None,
        verify_identity: bool = True,
    ) -> None:
        self._build = session_builder or boto3.Session
        self._verify_identity = verify_identity

    def resolve(self, secret_ref: str, region: str) -> AWSSession:
        """Return a new session for *secret_ref* scoped to *region*."""
        scheme, value = parse_secret_ref(secret_ref)

        if scheme == SCHEME_ENV:
            raw = self._build(region_name=region)
        elif scheme == SCHEME_PROFILE:
            try:
                raw = self._build(profile_name=value, region_name=region)
            except ProfileNotFound as exc:
                raise FatalError(
                    f"AWS profile '{value}' not found", resource=secret_ref,
                ) from exc
        else:
            creds = self._read_secret(value, region)
            raw = self._build(region_name=region, **creds)

        aws = AWSSession(region=region, secret_ref=secret_ref, _session=raw)
        if self._verify_identity:
            self._identify(aws)
        return aws

    # -- internals ------------------------------------------------------

    def _read_secret(self, secret_id: str, region: str) -> Dict[str, str]:
        resolver = self._build(region_name=region)
        try:
            resp = resolver.client("secretsmanager").get_secret_value(
                SecretId=secret_id,
            )
        except (BotoCoreError, ClientError) as exc:
            raise classify_provider_error(exc, resource=secret_id) from exc

        try:
            payload = json.loads(resp.get("SecretString") or "")
        except json.JSONDecodeError as exc:
            raise FatalError(
                f"secret '{secret_id}' is not valid JSON", resource=secret_id,
            ) from exc

        if not isinstance(payload, dict):
            raise FatalError(
                f"secret '{secret_id}' must be a JSON object", resource=secret_id,
            )
        missing = [k for k in _REQUIRED_SECRET_KEYS if not payload.get(k)]
        if missing:
            raise FatalError(
                f"secret '{secret_id}' is missing {', '.join(missing)}",
                resource=secret_id,
            )

        creds = {k: str(payload[k]) for k in _REQUIRED_SECRET_KEYS}
        if payload.get("aws_session_token"):
            creds["aws_session_token"] = str(payload["aws_session_token"])
        return creds

    def _identify(self, aws: AWSSession) -> None:
        try:
            identity = aws.client("sts").get_caller_identity()
        except (BotoCoreError, ClientError) as exc:
            raise classify_provider_error(exc, resource=aws.secret_ref) from exc
        aws.account_id = identity.get("Account", "")
        aws.caller_arn = identity.get("Arn", "")
        logger.debug(
            "Resolved %s → account=%s arn=%s",
            aws.secret_ref, aws.account_id, aws.caller_arn,
        )
