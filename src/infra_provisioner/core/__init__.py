"""Core infrastructure components for infra-provisioner."""

from infra_provisioner.core.provider import ProviderContext
from infra_provisioner.core.retry import RetryPolicy, call_with_retry, call_with_timeout
from infra_provisioner.core.state import State, StateRecord, StateStore

__all__ = [
    "ProviderContext",
    "RetryPolicy",
    "State",
    "StateRecord",
    "StateStore",
    "call_with_retry",
    "call_with_timeout",
]
