"""Request and settings loading from YAML files and the environment.

- :func:`load_request`: parse a request YAML into a :class:`ProvisioningRequest`
- :func:`load_settings`: build :class:`ProvisionerSettings` from an optional
  YAML file, then apply environment overrides

Environment overrides (highest precedence)::

    EKS_PROVISIONER_SETTINGS    path of the settings YAML when none is passed
    EKS_PROVISIONER_KUBECTL     kubectl binary used by the bootstrap step
    TEMPORAL_HOST               Temporal frontend host
    TEMPORAL_PORT               Temporal frontend port
    TEMPORAL_NAMESPACE          Temporal namespace
    EKS_PROVISIONER_TASK_QUEUE  task queue the worker polls and runs start on
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from eks_provisioner.config.models import ProvisionerSettings, ProvisioningRequest

logger = logging.getLogger(__name__)

SETTINGS_ENV_VAR = "EKS_PROVISIONER_SETTINGS"
KUBECTL_ENV_VAR = "EKS_PROVISIONER_KUBECTL"
TASK_QUEUE_ENV_VAR = "EKS_PROVISIONER_TASK_QUEUE"

_TEMPORAL_ENV = {
    "host": "TEMPORAL_HOST",
    "port": "TEMPORAL_PORT",
    "namespace": "TEMPORAL_NAMESPACE",
    "task_queue": TASK_QUEUE_ENV_VAR,
}


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return raw


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


def load_request(path: str | Path) -> ProvisioningRequest:
    """Load a provisioning request YAML.

    The document may either be the request itself or wrap it under a
    top-level ``cluster:`` key.

    Raises:
        FileNotFoundError: If *path* does not exist.
        pydantic.ValidationError: If the request is invalid.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Request file not found: {path}")
    raw = _read_yaml(path)
    if "cluster" in raw and isinstance(raw["cluster"], dict):
        raw = raw["cluster"]
    return ProvisioningRequest.model_validate(raw)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def load_settings(path: Optional[str | Path] = None) -> ProvisionerSettings:
    """Build settings from *path* (or ``$EKS_PROVISIONER_SETTINGS``) and env.

    A missing settings file is not an error; defaults apply.
    """
    raw: Dict[str, Any] = {}
    effective = path or os.environ.get(SETTINGS_ENV_VAR, "")
    if effective:
        settings_path = Path(effective)
        if settings_path.is_file():
            raw = _read_yaml(settings_path)
        else:
            logger.warning("Settings file %s not found, using defaults.", settings_path)

    temporal = dict(raw.get("temporal") or {})
    for field, env_var in _TEMPORAL_ENV.items():
        value = os.environ.get(env_var, "")
        if value:
            temporal[field] = value
    if temporal:
        raw["temporal"] = temporal

    kubectl = os.environ.get(KUBECTL_ENV_VAR, "")
    if kubectl:
        raw["kubectl_path"] = kubectl

    return ProvisionerSettings.model_validate(raw)
