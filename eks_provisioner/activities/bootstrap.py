"""Bootstrap: apply the cluster-internal objects with ``kubectl apply``.

The manifest (``aws-auth`` ConfigMap mapping the node role and the cluster
user, default storage class, system namespace) is rendered from the
packaged ``bootstrap`` template and applied declaratively, so re-running
the activity converges instead of duplicating anything.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from typing import Callable, List, Optional

import yaml

from eks_provisioner.activities.base import Activity
from eks_provisioner.activities.models import BootstrapInput, BootstrapOutput
from eks_provisioner.aws.session import SessionFactory
from eks_provisioner.errors import FatalError, TransientError
from eks_provisioner.kube.auth import build_kubeconfig, eks_token
from eks_provisioner.kube.runner import KubectlResult, apply_manifest
from eks_provisioner.render.renderer import render_template, unresolved_tokens
from eks_provisioner.runtime.context import ActivityContext
from eks_provisioner.templates.provider import KIND_BOOTSTRAP, TemplateProvider

logger = logging.getLogger(__name__)


def manifest_objects(manifest: str) -> List[str]:
    """Return ``Kind/name`` for every document in *manifest*."""
    objects = []
    for doc in yaml.safe_load_all(manifest):
        if not doc:
            continue
        name = doc.get("metadata", {}).get("name", "")
        objects.append(f"{doc.get('kind', '?')}/{name}")
    return objects


class Bootstrap(Activity):
    name = "Bootstrap"
    input_type = BootstrapInput
    output_type = BootstrapOutput

    def __init__(
        self,
        sessions: SessionFactory,
        templates: Optional[TemplateProvider] = None,
        *,
        kubectl: str = "kubectl",
        apply: Callable[..., KubectlResult] = apply_manifest,
    ) -> None:
        super().__init__(sessions, templates)
        self.kubectl = kubectl
        self._apply = apply

    def render(self, arg: BootstrapInput) -> str:
        try:
            rendered = render_template(
                self.templates.get(KIND_BOOTSTRAP),
                {
                    "BOOTSTRAP_CLUSTER_NAME": arg.cluster_name,
                    "BOOTSTRAP_NODE_ROLE_ARN": arg.node_role_arn,
                    "BOOTSTRAP_CLUSTER_USER_ARN": arg.user_arn,
                    "BOOTSTRAP_CLUSTER_USER_NAME": arg.user_name,
                    "BOOTSTRAP_SYSTEM_NAMESPACE": arg.system_namespace,
                },
            )
        except ValueError as exc:
            raise FatalError(str(exc), resource=KIND_BOOTSTRAP) from exc
        leftover = unresolved_tokens(rendered)
        if leftover:
            raise FatalError(
                f"bootstrap template has unresolved token(s): {', '.join(leftover)}",
                resource=KIND_BOOTSTRAP,
            )
        return rendered

    def execute(self, ctx: ActivityContext, arg: BootstrapInput) -> BootstrapOutput:
        manifest = self.render(arg)
        objects = manifest_objects(manifest)
        aws = self.session_for(arg)
        token = eks_token(aws.session, arg.cluster_name, arg.region)
        kubeconfig = build_kubeconfig(
            arg.cluster_name, arg.endpoint, arg.certificate_authority, token,
        )

        ctx.heartbeat({"applying": len(objects)})
        fd, path = tempfile.mkstemp(prefix=f"{arg.cluster_name}-", suffix=".kubeconfig")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(kubeconfig)
            result = self._apply(manifest, kubeconfig=path, kubectl=self.kubectl)
        finally:
            os.unlink(path)

        if not result.success:
            reason = result.stderr or result.stdout or f"exit code {result.returncode}"
            details = {"returncode": result.returncode}
            if result.transient:
                raise TransientError(
                    f"kubectl apply failed: {reason}",
                    step=ctx.step, resource=arg.cluster_name, details=details,
                )
            raise FatalError(
                f"kubectl apply failed: {reason}",
                step=ctx.step, resource=arg.cluster_name, details=details,
            )

        digest = hashlib.sha256(manifest.encode("utf-8")).hexdigest()[:12]
        logger.info("Bootstrapped %s (%d objects).", arg.cluster_name, len(objects))
        return BootstrapOutput(
            applied=objects,
            marker=f"{arg.cluster_name}/bootstrap/{digest}",
        )
