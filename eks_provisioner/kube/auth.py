"""EKS authentication for kubectl.

EKS accepts a bearer token that is a presigned STS ``GetCallerIdentity``
URL bound to the cluster name via the ``x-k8s-aws-id`` header, base64url
encoded and prefixed with ``k8s-aws-v1.``.  EKS accepts a token for 15
minutes.
"""

from __future__ import annotations

import base64
from typing import Any, Dict

import yaml
from botocore.signers import RequestSigner

TOKEN_PREFIX = "k8s-aws-v1."
CLUSTER_ID_HEADER = "x-k8s-aws-id"
TOKEN_EXPIRES_IN = 60


def eks_token(session: Any, cluster_name: str, region: str) -> str:
    """Return a bearer token for *cluster_name* from a boto3 *session*."""
    sts = session.client("sts", region_name=region)
    signer = RequestSigner(
        sts.meta.service_model.service_id,
        region,
        "sts",
        "v4",
        session.get_credentials(),
        session.events,
    )
    url = signer.generate_presigned_url(
        {
            "method": "GET",
            "url": (
                f"https://sts.{region}.amazonaws.com/"
                "?Action=GetCallerIdentity&Version=2011-06-15"
            ),
            "body": {},
            "headers": {CLUSTER_ID_HEADER: cluster_name},
            "context": {},
        },
        region_name=region,
        expires_in=TOKEN_EXPIRES_IN,
        operation_name="",
    )
    encoded = base64.urlsafe_b64encode(url.encode("utf-8")).decode("utf-8")
    return TOKEN_PREFIX + encoded.rstrip("=")


def build_kubeconfig(
    cluster_name: str,
    endpoint: str,
    certificate_authority: str,
    token: str,
) -> str:
    """Render a single-context kubeconfig (YAML text)."""
    config: Dict[str, Any] = {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{
            "name": cluster_name,
            "cluster": {
                "server": endpoint,
                "certificate-authority-data": certificate_authority,
            },
        }],
        "users": [{"name": cluster_name, "user": {"token": token}}],
        "contexts": [{
            "name": cluster_name,
            "context": {"cluster": cluster_name, "user": cluster_name},
        }],
        "current-context": cluster_name,
    }
    return yaml.safe_dump(config, sort_keys=False)
