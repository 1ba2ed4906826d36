"""
Providers module - the Provider API boundary.

The engine orchestrates (declarations -> graph -> plan -> apply); providers
perform the actual create/update/delete calls against a cloud API.

Usage:
    from infraplan.providers import ProviderRegistry

    registry = ProviderRegistry.create_default()
    provider = registry.create("local", {"path": "~/.config/infraplan/cloud.json"})
"""

from infraplan.providers.base import Outputs, Provider
from infraplan.providers.memory import InMemoryProvider, LocalProvider
from infraplan.providers.registry import ProviderRegistry

__all__ = [
    "Outputs",
    "Provider",
    "InMemoryProvider",
    "LocalProvider",
    "ProviderRegistry",
]
