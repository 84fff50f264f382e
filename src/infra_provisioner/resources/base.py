"""Resource node declarations."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from infra_provisioner.resources.references import (
    AttributeReference,
    iter_references,
    parse_references,
)


class NodeStatus(str, Enum):
    PLANNED = "planned"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"
    DESTROYED = "destroyed"


class ResourceNode(BaseModel):
    """A single declared resource instance.

    Nodes are pure data - they define the desired configuration.
    Providers know how to create, update and destroy them.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(pattern=r"^[a-zA-Z0-9_-]+$")
    type: str = Field(min_length=1)
    config: dict[str, Any] = Field(default_factory=dict)

    # Lifecycle
    depends_on: list[str] = Field(default_factory=list)
    status: NodeStatus = NodeStatus.PLANNED

    @field_validator("config", mode="before")
    @classmethod
    def _parse_config_references(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return parse_references(value)
        return value

    def references(self) -> list[AttributeReference]:
        """References found anywhere in the configuration."""
        return list(iter_references(self.config))

    def dependency_ids(self) -> list[str]:
        """Producer ids: explicit ``depends_on`` first, then referenced nodes."""
        deps: list[str] = []
        for dep in [*self.depends_on, *(r.node_id for r in self.references())]:
            if dep not in deps:
                deps.append(dep)
        return deps
