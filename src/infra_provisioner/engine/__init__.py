"""Graph, plan and apply engine for declared resources."""

from infra_provisioner.engine.engine import ProvisioningEngine
from infra_provisioner.engine.errors import (
    ApplyCanceled,
    CyclicDependencyError,
    DuplicateNodeError,
    EngineError,
    ProviderError,
    ProviderPermanentError,
    ProviderTransientError,
    StalePlanError,
    StateLockedError,
    UnknownReferenceError,
    UnknownResourceTypeError,
)
from infra_provisioner.engine.executor import ApplyExecutor
from infra_provisioner.engine.graph import DependencyEdge, GraphBuilder, ResourceGraph
from infra_provisioner.engine.handlers import ChangeClass, ResourceProvider
from infra_provisioner.engine.planner import Planner
from infra_provisioner.engine.registry import ResourceTypeRegistry
from infra_provisioner.engine.resolver import DependencyResolver, resolve_graph
from infra_provisioner.engine.types import (
    Action,
    ApplyResult,
    DriftReport,
    Plan,
    PlanMetadata,
    PlanStep,
    StepResult,
    StepStatus,
)

__all__ = [
    "Action",
    "ApplyCanceled",
    "ApplyExecutor",
    "ApplyResult",
    "ChangeClass",
    "CyclicDependencyError",
    "DependencyEdge",
    "DependencyResolver",
    "DriftReport",
    "DuplicateNodeError",
    "EngineError",
    "GraphBuilder",
    "Plan",
    "PlanMetadata",
    "PlanStep",
    "Planner",
    "ProviderError",
    "ProviderPermanentError",
    "ProviderTransientError",
    "ProvisioningEngine",
    "ResourceGraph",
    "ResourceProvider",
    "ResourceTypeRegistry",
    "StalePlanError",
    "StateLockedError",
    "StepResult",
    "StepStatus",
    "UnknownReferenceError",
    "UnknownResourceTypeError",
    "resolve_graph",
]
