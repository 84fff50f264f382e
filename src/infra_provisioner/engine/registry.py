"""Resource type registry for provider dispatch."""

from __future__ import annotations

from typing import TYPE_CHECKING

from infra_provisioner.engine.errors import UnknownResourceTypeError

if TYPE_CHECKING:
    from infra_provisioner.engine.handlers import ResourceProvider


class ResourceTypeRegistry:
    """Registry mapping type tag -> provider."""

    def __init__(self) -> None:
        self._providers: dict[str, ResourceProvider] = {}

    def register(self, resource_type: str, provider: ResourceProvider) -> None:
        if not isinstance(resource_type, str) or not resource_type:
            raise ValueError("Resource type must be a non-empty string")

        if resource_type in self._providers:
            raise ValueError(f"Resource type already registered: {resource_type}")

        self._providers[resource_type] = provider

    def get(self, resource_type: str) -> ResourceProvider:
        try:
            return self._providers[resource_type]
        except KeyError as e:
            raise UnknownResourceTypeError(resource_type) from e

    def __contains__(self, resource_type: object) -> bool:
        return resource_type in self._providers

    def types(self) -> list[str]:
        return sorted(self._providers)
