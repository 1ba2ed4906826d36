"""
Provider Registry - look up provider factories by name.

The registry maps provider names to factories that build a Provider from an
options mapping (the `provider.options` section of config.yaml).

Built-in providers:
- memory: InMemoryProvider (no options)
- local: LocalProvider (options: path)

Third-party providers register through the `infraplan.providers`
entry-point group:

    [project.entry-points."infraplan.providers"]
    mycloud = "mycloud_infraplan:make_provider"
"""

import logging
from importlib.metadata import entry_points
from typing import Any, Callable

from infraplan.errors import ConfigError
from infraplan.providers.base import Provider

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "infraplan.providers"

# Factory signature: options mapping -> Provider
ProviderFactory = Callable[[dict[str, Any]], Provider]


def _memory_factory(options: dict[str, Any]) -> Provider:
    from infraplan.providers.memory import InMemoryProvider
    return InMemoryProvider()


def _local_factory(options: dict[str, Any]) -> Provider:
    from infraplan.providers.memory import LocalProvider
    if "path" not in options:
        raise ConfigError("local provider requires option 'path'")
    return LocalProvider(options["path"])


class ProviderRegistry:
    """
    Registry for provider factories by name.

    Usage:
        registry = ProviderRegistry.create_default()
        provider = registry.create("local", {"path": "/tmp/cloud.json"})

        # Or register a custom factory
        registry.register("fake", lambda options: FakeProvider())
    """

    def __init__(self) -> None:
        """Initialize an empty provider registry."""
        self._factories: dict[str, ProviderFactory] = {}

    def register(self, name: str, factory: ProviderFactory) -> None:
        """
        Register a factory for a provider name.

        Args:
            name: Provider name used in config (e.g. "local")
            factory: Callable building a Provider from an options dict
        """
        self._factories[name] = factory

    def has(self, name: str) -> bool:
        return name in self._factories

    def list_providers(self) -> list[str]:
        return sorted(self._factories)

    def create(self, name: str, options: dict[str, Any] | None = None) -> Provider:
        """
        Build a provider by name.

        Args:
            name: Registered provider name
            options: Provider-specific options

        Returns:
            Provider instance

        Raises:
            ConfigError: If no factory is registered for name
        """
        if name not in self._factories:
            raise ConfigError(
                f"Unknown provider: {name}. Registered: {self.list_providers()}"
            )
        provider = self._factories[name](dict(options or {}))
        if not isinstance(provider, Provider):
            raise ConfigError(f"Factory for '{name}' did not return a Provider")
        return provider

    def discover(self) -> None:
        """Register every factory published under the infraplan.providers entry points."""
        for ep in entry_points().select(group=ENTRY_POINT_GROUP):
            logger.debug(f"Registering provider '{ep.name}' from {ep.value}")
            self.register(ep.name, ep.load())

    @classmethod
    def create_default(cls, discover: bool = True) -> "ProviderRegistry":
        """
        Create a registry with the built-in providers.

        Args:
            discover: Also load providers from installed entry points

        Returns:
            Configured ProviderRegistry
        """
        registry = cls()
        registry.register("memory", _memory_factory)
        registry.register("local", _local_factory)
        if discover:
            registry.discover()
        return registry
