"""kubectl CLI wrapper.

Wraps ``kubectl`` as a subprocess so bootstrap objects are applied
declaratively (``kubectl apply``) and re-applying them is always safe.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Return code reported when the kubectl binary cannot be executed.
NOT_FOUND_RETURNCODE = 127

#: Return code reported when kubectl does not finish in time.
TIMEOUT_RETURNCODE = 124

DEFAULT_TIMEOUT_SECONDS = 120

#: stderr fragments meaning the API server was not reachable (yet).
TRANSIENT_MARKERS = (
    "Unable to connect to the server",
    "connection refused",
    "i/o timeout",
    "TLS handshake timeout",
    "the server is currently unable to handle the request",
    "etcdserver: request timed out",
    "net/http: request canceled",
)

# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------


@dataclass
class KubectlResult:
    """Parsed outcome of a ``kubectl`` invocation."""

    command: str
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def transient(self) -> bool:
        """*True* when the failure is worth retrying."""
        if self.success:
            return False
        if self.returncode == TIMEOUT_RETURNCODE:
            return True
        return any(marker in self.stderr for marker in TRANSIENT_MARKERS)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def run_kubectl(
    args: List[str],
    *,
    kubectl: str = "kubectl",
    kubeconfig: Optional[str] = None,
    stdin: Optional[str] = None,
    timeout: int = DEFAULT_TIMEOUT_SECONDS,
    extra_env: Optional[Dict[str, str]] = None,
) -> KubectlResult:
    """Run ``kubectl`` with *args* and return a :class:`KubectlResult`."""
    cmd = [kubectl, *args]
    if kubeconfig:
        cmd = [kubectl, "--kubeconfig", kubeconfig, *args]
    env = {**os.environ}
    if extra_env:
        env.update(extra_env)

    logger.info("Running: %s", " ".join(cmd))

    try:
        proc = subprocess.run(
            cmd,
            input=stdin,
            capture_output=True,
            text=True,
            env=env,
            timeout=timeout,
        )
    except FileNotFoundError:
        return KubectlResult(
            command=" ".join(cmd),
            returncode=NOT_FOUND_RETURNCODE,
            stderr=f"{kubectl} not found on PATH",
        )
    except subprocess.TimeoutExpired:
        return KubectlResult(
            command=" ".join(cmd),
            returncode=TIMEOUT_RETURNCODE,
            stderr=f"{kubectl} did not finish within {timeout}s",
        )

    return KubectlResult(
        command=" ".join(cmd),
        returncode=proc.returncode,
        stdout=proc.stdout.strip(),
        stderr=proc.stderr.strip(),
    )


def apply_manifest(
    manifest: str,
    *,
    kubeconfig: str,
    kubectl: str = "kubectl",
    timeout: int = DEFAULT_TIMEOUT_SECONDS,
) -> KubectlResult:
    """``kubectl apply -f -`` with *manifest* on stdin."""
    result = run_kubectl(
        ["apply", "-f", "-"],
        kubectl=kubectl,
        kubeconfig=kubeconfig,
        stdin=manifest,
        timeout=timeout,
    )
    if result.success:
        logger.info("Applied manifest: %s", result.stdout.replace("\n", "; "))
    else:
        logger.error(
            "kubectl apply failed (rc=%d): %s",
            result.returncode,
            result.stderr or "(no stderr)",
        )
    return result
