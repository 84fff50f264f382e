"""Engine error types."""

from __future__ import annotations


class EngineError(Exception):
    """Base exception for engine errors."""


class UnknownResourceTypeError(EngineError):
    """Raised when a resource type has no registered provider."""

    def __init__(self, resource_type: str) -> None:
        super().__init__(f"Unknown resource type: {resource_type}")
        self.resource_type = resource_type


class DuplicateNodeError(EngineError):
    """Raised when multiple declared nodes share the same id."""

    def __init__(self, node_id: str) -> None:
        super().__init__(f"Duplicate node id: {node_id}")
        self.node_id = node_id


class UnknownReferenceError(EngineError):
    """Raised when a reference or ``depends_on`` names an undeclared node."""

    def __init__(self, node_id: str, target: str) -> None:
        super().__init__(f"Node '{node_id}' references unknown node '{target}'")
        self.node_id = node_id
        self.target = target


class CyclicDependencyError(EngineError):
    """Raised when dependencies contain a cycle.

    ``cycle`` lists the participating node ids in cycle order.
    """

    def __init__(self, cycle: list[str]) -> None:
        msg = "Dependency cycle detected"
        if cycle:
            msg += f": {' -> '.join([*cycle, cycle[0]])}"
        super().__init__(msg)
        self.cycle = cycle


class StalePlanError(EngineError):
    """Raised when applying a plan against a different state than planned."""


class StateLockedError(EngineError):
    """Raised when another session holds the state lock."""


class ProviderError(EngineError):
    """Base class for errors raised by resource providers."""

    transient = False


class ProviderTransientError(ProviderError):
    """Retryable provider failure (network, throttling, timeouts)."""

    transient = True


class ProviderPermanentError(ProviderError):
    """Non-retryable provider failure (validation, permissions)."""


class ApplyCanceled(EngineError):
    """Raised when an apply is canceled (e.g., Ctrl-C)."""
