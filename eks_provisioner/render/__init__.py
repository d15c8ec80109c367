"""Token substitution for bootstrap manifests."""

from eks_provisioner.render.renderer import REQUIRED_KEYS, render_template, unresolved_tokens

__all__ = ["REQUIRED_KEYS", "render_template", "unresolved_tokens"]
