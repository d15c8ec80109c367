"""Activity base class.

An activity is one idempotent unit of provider work.  Subclasses set
``name``, ``input_type`` and ``output_type`` and implement :meth:`execute`.
Calling the activity:

1. validates the input (plain dicts from the data converter are accepted);
2. runs :meth:`execute` with a fresh session per invocation;
3. converts any raised exception into a classified
   :class:`~eks_provisioner.errors.ProvisioningError`.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Type

from pydantic import BaseModel

from eks_provisioner.activities.models import ActivityInput
from eks_provisioner.aws.naming import ClusterNames, derive_names
from eks_provisioner.aws.session import AWSSession, SessionFactory
from eks_provisioner.config.models import ROLE_TAG_KEY
from eks_provisioner.errors import classify_provider_error
from eks_provisioner.runtime.context import ActivityContext
from eks_provisioner.templates.provider import TemplateProvider

logger = logging.getLogger(__name__)


class Activity(ABC):
    """Base class for registered activities."""

    name: str = ""
    input_type: Type[BaseModel] = ActivityInput
    output_type: Type[BaseModel] = BaseModel

    def __init__(
        self,
        sessions: SessionFactory,
        templates: Optional[TemplateProvider] = None,
    ) -> None:
        self.sessions = sessions
        self.templates = templates

    def __call__(self, ctx: ActivityContext, arg: Any) -> BaseModel:
        if not isinstance(arg, self.input_type):
            arg = self.input_type.model_validate(arg)

        logger.debug("%s attempt %d for %s", self.name, ctx.attempt, ctx.step)
        try:
            return self.execute(ctx, arg)
        except Exception as exc:  # noqa: BLE001
            err = classify_provider_error(
                exc, step=ctx.step, resource=getattr(arg, "cluster_name", ""),
            )
            if err is exc:
                raise
            raise err from exc

    @abstractmethod
    def execute(self, ctx: ActivityContext, arg: Any) -> BaseModel:
        """Do the work; raise on failure."""

    # -- helpers --------------------------------------------------------

    def session_for(self, arg: ActivityInput) -> AWSSession:
        """Resolve a session owned by this invocation only."""
        return self.sessions.resolve(arg.secret_ref, arg.region)

    @staticmethod
    def names(arg: ActivityInput) -> ClusterNames:
        return derive_names(arg.cluster_name)

    @staticmethod
    def tags_for(arg: ActivityInput, role: str) -> Dict[str, str]:
        tags = dict(arg.tags)
        tags[ROLE_TAG_KEY] = role
        return tags
