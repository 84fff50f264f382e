"""Resource node model and attribute references."""

from infra_provisioner.resources.base import NodeStatus, ResourceNode
from infra_provisioner.resources.output import OutputSpec
from infra_provisioner.resources.references import (
    UNKNOWN,
    AttributeReference,
    iter_references,
    parse_references,
    ref,
    resolve_references,
)

__all__ = [
    "UNKNOWN",
    "AttributeReference",
    "NodeStatus",
    "OutputSpec",
    "ResourceNode",
    "iter_references",
    "parse_references",
    "ref",
    "resolve_references",
]
