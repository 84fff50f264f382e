"""Engine-facing resource provider interface."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

    from infra_provisioner.core.provider import ProviderContext
    from infra_provisioner.core.state import StateRecord
    from infra_provisioner.resources.base import ResourceNode


class ChangeClass(str, Enum):
    IN_PLACE = "in-place"
    REPLACE = "replace"


class ResourceProvider:
    """Base class for resource providers.

    Providers translate nodes into calls against a concrete cloud API.  The
    engine treats them as opaque: it hands over nodes whose references are
    already resolved and records whatever outputs come back.

    Raise :class:`~infra_provisioner.engine.errors.ProviderTransientError` for
    failures worth retrying (network, throttling) and
    :class:`~infra_provisioner.engine.errors.ProviderPermanentError` for
    everything else.
    """

    def create(self, ctx: ProviderContext, node: ResourceNode) -> dict[str, Any]:
        """Create the resource. Return its output attributes."""
        raise NotImplementedError

    def update(
        self, ctx: ProviderContext, node: ResourceNode, prior: StateRecord
    ) -> dict[str, Any]:
        """Update the resource in place. Return its output attributes."""
        raise NotImplementedError

    def destroy(self, ctx: ProviderContext, prior: StateRecord) -> None:
        """Destroy the resource."""
        raise NotImplementedError

    def classify_change(self, old: Mapping[str, Any], new: Mapping[str, Any]) -> ChangeClass:
        """Whether moving from *old* to *new* config can happen in place.

        The default treats every change as in-place updatable.
        """
        _ = old, new
        return ChangeClass.IN_PLACE

    def read(self, ctx: ProviderContext, prior: StateRecord) -> dict[str, Any] | None:
        """Read live outputs. Return None if the resource no longer exists.

        Optional; only drift reporting uses it.
        """
        raise NotImplementedError
