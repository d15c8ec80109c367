"""UploadAccessKey: import the operator's SSH public key as an EC2 key pair.

The key pair is named ``<cluster>-ssh`` and tagged with the SHA-256 of the
normalised key material.  Identical material is a no-op; different material
replaces the key pair (delete, then import).
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Dict, Optional

from botocore.exceptions import ClientError

from eks_provisioner.activities.base import Activity
from eks_provisioner.activities.models import AccessKeyInput, AccessKeyOutput
from eks_provisioner.aws.naming import ROLE_SSH_KEY
from eks_provisioner.errors import FatalError, StepStatus, error_code
from eks_provisioner.runtime.context import ActivityContext

logger = logging.getLogger(__name__)

#: Tag holding the SHA-256 of the imported public key.
CONTENT_TAG_KEY = "eks-provisioner:key-sha256"

_KEY_TYPES = (
    "ssh-rsa",
    "ssh-ed25519",
    "ecdsa-sha2-nistp256",
    "ecdsa-sha2-nistp384",
    "ecdsa-sha2-nistp521",
)


def normalize_public_key(material: str) -> str:
    """Return ``"<type> <base64>"`` without the comment.

    Raises:
        FatalError: If *material* is not an OpenSSH public key.
    """
    parts = (material or "").strip().split()
    if len(parts) < 2 or parts[0] not in _KEY_TYPES:
        raise FatalError("ssh public key is not in OpenSSH format")
    return f"{parts[0]} {parts[1]}"


def content_hash(material: str) -> str:
    return hashlib.sha256(normalize_public_key(material).encode("utf-8")).hexdigest()


def _describe_key_pair(ec2: Any, key_name: str) -> Optional[Dict[str, Any]]:
    try:
        pairs = ec2.describe_key_pairs(KeyNames=[key_name]).get("KeyPairs", [])
    except ClientError as exc:
        if error_code(exc) == "InvalidKeyPair.NotFound":
            return None
        raise
    return pairs[0] if pairs else None


class UploadAccessKey(Activity):
    name = "UploadAccessKey"
    input_type = AccessKeyInput
    output_type = AccessKeyOutput

    def execute(self, ctx: ActivityContext, arg: AccessKeyInput) -> AccessKeyOutput:
        key_name = self.names(arg).ssh_key
        digest = content_hash(arg.public_key)
        ec2 = self.session_for(arg).client("ec2")

        existing = _describe_key_pair(ec2, key_name)
        if existing is not None:
            tags = {t["Key"]: t["Value"] for t in existing.get("Tags", [])}
            if tags.get(CONTENT_TAG_KEY) == digest:
                logger.info("Key pair %s is up to date.", key_name)
                return AccessKeyOutput(
                    status=StepStatus.ALREADY_SATISFIED,
                    key_name=key_name,
                    key_pair_id=existing.get("KeyPairId", ""),
                    content_sha256=digest,
                )
            logger.info("Key pair %s content changed, replacing it.", key_name)
            ec2.delete_key_pair(KeyName=key_name)

        tags = self.tags_for(arg, ROLE_SSH_KEY)
        tags[CONTENT_TAG_KEY] = digest
        try:
            resp = ec2.import_key_pair(
                KeyName=key_name,
                PublicKeyMaterial=normalize_public_key(arg.public_key).encode("utf-8"),
                TagSpecifications=[{
                    "ResourceType": "key-pair",
                    "Tags": [{"Key": k, "Value": tags[k]} for k in sorted(tags)],
                }],
            )
        except ClientError as exc:
            if error_code(exc) != "InvalidKeyPair.Duplicate":
                raise
            # Imported by a concurrent attempt; accept it only if the content matches.
            current = _describe_key_pair(ec2, key_name) or {}
            current_tags = {t["Key"]: t["Value"] for t in current.get("Tags", [])}
            if current_tags.get(CONTENT_TAG_KEY) != digest:
                raise
            resp = current

        return AccessKeyOutput(
            key_name=key_name,
            key_pair_id=resp.get("KeyPairId", ""),
            content_sha256=digest,
        )
