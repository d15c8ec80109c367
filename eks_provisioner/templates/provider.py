"""Infrastructure template provider.

Activities never embed template text; they ask a :class:`TemplateProvider`
for a template by kind.  The built-in provider serves the CloudFormation
templates packaged under ``eks_provisioner/templates/cloudformation`` and
the bootstrap manifests under ``eks_provisioner/templates/manifests``.

Templates are read once per provider and cached.  A template that is
missing or does not parse is a :class:`~eks_provisioner.errors.FatalError`:
retrying cannot fix it.
"""

from __future__ import annotations

import logging
from importlib import resources
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from eks_provisioner.errors import FatalError

logger = logging.getLogger(__name__)

# Template kinds
KIND_NETWORK = "network"
KIND_SUBNET = "subnet"
KIND_IAM = "iam"
KIND_NODE_POOL = "nodepool"
KIND_BOOTSTRAP = "bootstrap"

#: Kind → (subdirectory, filename)
_BUILTIN: Dict[str, tuple] = {
    KIND_NETWORK: ("cloudformation", "network.yaml"),
    KIND_SUBNET: ("cloudformation", "subnet.yaml"),
    KIND_IAM: ("cloudformation", "iam.yaml"),
    KIND_NODE_POOL: ("cloudformation", "nodepool.yaml"),
    KIND_BOOTSTRAP: ("manifests", "bootstrap.yaml"),
}

_STACK_KINDS = frozenset({KIND_NETWORK, KIND_SUBNET, KIND_IAM, KIND_NODE_POOL})


class _TemplateLoader(yaml.SafeLoader):
    """SafeLoader that also reads CloudFormation short-form intrinsics.

    ``!Ref X`` loads as ``{"Ref": "X"}`` and ``!Sub ...``, ``!GetAtt ...`` and
    the other ``!<Fn>`` tags as ``{"Fn::<Fn>": ...}``.
    """


def _intrinsic(loader: yaml.SafeLoader, suffix: str, node: yaml.Node) -> Dict[str, object]:
    if isinstance(node, yaml.ScalarNode):
        value: object = loader.construct_scalar(node)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)
    return {"Ref" if suffix == "Ref" else f"Fn::{suffix}": value}


_TemplateLoader.add_multi_constructor("!", _intrinsic)


class TemplateProvider:
    """Serve templates by kind.

    Args:
        override_dir: Optional directory whose ``<kind>.yaml`` files take
            precedence over the packaged templates.
    """

    def __init__(self, override_dir: Optional[Path] = None) -> None:
        self.override_dir = Path(override_dir) if override_dir else None
        self._cache: Dict[str, str] = {}

    def kinds(self) -> List[str]:
        return sorted(_BUILTIN)

    def get(self, kind: str) -> str:
        """Return the template text for *kind*.

        Raises:
            FatalError: Unknown kind, unreadable file or invalid template.
        """
        if kind in self._cache:
            return self._cache[kind]
        if kind not in _BUILTIN:
            raise FatalError(
                f"unknown template kind '{kind}' (known: {', '.join(self.kinds())})",
                resource=kind,
            )

        text = self._read(kind)
        self._validate(kind, text)
        self._cache[kind] = text
        return text

    def source(self, kind: str) -> str:
        """Human-readable origin of the *kind* template."""
        override = self._override_path(kind)
        if override is not None and override.is_file():
            return str(override)
        subdir, filename = _BUILTIN[kind]
        return f"builtin:{subdir}/{filename}"

    # -- internals ------------------------------------------------------

    def _override_path(self, kind: str) -> Optional[Path]:
        if self.override_dir is None:
            return None
        return self.override_dir / f"{kind}.yaml"

    def _read(self, kind: str) -> str:
        override = self._override_path(kind)
        if override is not None and override.is_file():
            logger.debug("Using template override %s", override)
            return override.read_text(encoding="utf-8")

        subdir, filename = _BUILTIN[kind]
        try:
            return (
                resources.files("eks_provisioner.templates")
                .joinpath(subdir)
                .joinpath(filename)
                .read_text(encoding="utf-8")
            )
        except OSError as exc:
            raise FatalError(
                f"template '{kind}' is not available: {exc}", resource=kind,
            ) from exc

    def _validate(self, kind: str, text: str) -> None:
        try:
            docs = [d for d in yaml.load_all(text, Loader=_TemplateLoader) if d is not None]
        except yaml.YAMLError as exc:
            raise FatalError(
                f"template '{kind}' is not valid YAML: {exc}", resource=kind,
            ) from exc

        if not docs:
            raise FatalError(f"template '{kind}' is empty", resource=kind)

        if kind in _STACK_KINDS:
            body = docs[0]
            if not isinstance(body, dict) or not body.get("Resources"):
                raise FatalError(
                    f"template '{kind}' has no Resources section", resource=kind,
                )
