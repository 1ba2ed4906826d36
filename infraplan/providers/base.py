"""
Provider protocol - the engine's only view of a cloud API.

Providers are opaque to the engine: they receive a resource kind and a fully
resolved property bag, and return a provider id plus outputs. The engine
never knows cloud-specific resource schemas.

Error handling contract:
- Raise ProviderThrottled / ProviderUnavailable for transient failures
  (the executor retries with backoff)
- Raise ProviderRejected (or SchemaError) for permanent failures
  (the executor fails the step immediately)
- Any other exception is treated as permanent
"""

from abc import ABC, abstractmethod
from typing import Any

# Outputs are a flat mapping of attribute name to value
Outputs = dict[str, Any]


class Provider(ABC):
    """
    Abstract base class for providers.

    Implementations must be safe to call from several worker threads at
    once; the executor runs independent steps concurrently.
    """

    name: str = "provider"

    @abstractmethod
    def create(self, kind: str, properties: dict[str, Any]) -> tuple[str, Outputs]:
        """
        Create a resource.

        Args:
            kind: Resource kind
            properties: Fully resolved properties

        Returns:
            Tuple of (provider_id, outputs)
        """
        pass

    @abstractmethod
    def update(self, provider_id: str, properties: dict[str, Any]) -> Outputs:
        """
        Update an existing resource in place.

        Args:
            provider_id: Identifier returned by create
            properties: Fully resolved properties

        Returns:
            Outputs after the update
        """
        pass

    @abstractmethod
    def delete(self, provider_id: str) -> None:
        """
        Delete a resource.

        Args:
            provider_id: Identifier returned by create
        """
        pass
