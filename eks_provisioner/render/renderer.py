"""Manifest renderer: replaces ``${BOOTSTRAP_*}`` tokens.

Performs **text-level** token replacement so manifest key ordering and
comments survive rendering byte-for-byte.  Tokens that are not in the
substitution map are left untouched, which keeps literal placeholders such
as ``{{EC2PrivateDNSName}}`` (expanded by the node authenticator, not by
us) intact.
"""

from __future__ import annotations

import re
from typing import Dict, FrozenSet, List, Optional

# ── constants ────────────────────────────────────────────────────────

#: Keys every bootstrap render must supply with a non-empty value.
REQUIRED_KEYS: FrozenSet[str] = frozenset(
    {
        "BOOTSTRAP_CLUSTER_NAME",
        "BOOTSTRAP_NODE_ROLE_ARN",
        "BOOTSTRAP_CLUSTER_USER_ARN",
        "BOOTSTRAP_CLUSTER_USER_NAME",
        "BOOTSTRAP_SYSTEM_NAMESPACE",
    },
)

_TOKEN_RE = re.compile(r"\$\{(BOOTSTRAP_[A-Z0-9_]+)\}")


# ── public API ───────────────────────────────────────────────────────


def render_template(
    template_text: str,
    substitutions: Dict[str, str],
    *,
    required_keys: Optional[FrozenSet[str]] = None,
) -> str:
    """Replace all ``${KEY}`` tokens in *template_text*.

    Parameters
    ----------
    template_text:
        Raw manifest content.
    substitutions:
        Mapping of key → value, keys including the ``BOOTSTRAP_`` prefix.
    required_keys:
        Keys that **must** be present with a non-empty value.  Defaults to
        :data:`REQUIRED_KEYS`.

    Returns
    -------
    str
        Template text with every known ``${KEY}`` replaced by its value.

    Raises
    ------
    ValueError
        If a required key is missing or has an empty value.
    """
    if required_keys is None:
        required_keys = REQUIRED_KEYS

    missing: List[str] = sorted(
        k for k in required_keys if not substitutions.get(k)
    )
    if missing:
        raise ValueError(
            f"Missing required substitution key(s): {', '.join(missing)}"
        )

    # deterministic replacement order (sorted keys)
    result = template_text
    for key in sorted(substitutions):
        token = "${" + key + "}"
        result = result.replace(token, substitutions[key])
    return result


def unresolved_tokens(rendered: str) -> List[str]:
    """Return the sorted ``BOOTSTRAP_*`` tokens still present in *rendered*."""
    return sorted(set(_TOKEN_RE.findall(rendered)))
