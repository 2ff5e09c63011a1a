"""
Context provider registry for missing-context dispatch.

This module implements the Registry pattern for context provider mappers.
The registry is built once at startup (see
``cdk_deployer.context.create_context_providers``) and then only read by the
resolution loop, so adding a provider means adding one mapper class and one
registration, never touching the loop itself.

Usage:
    registry = ContextProviderRegistry()
    registry.register(SsmContextProviderMapper(client_provider))

    mapper = registry.get("ssm")
    value = mapper.get_context_value(query)
"""

from typing import Dict, TYPE_CHECKING

if TYPE_CHECKING:
    from .protocols import ContextProviderMapper

from .exceptions import ContextProviderNotFoundError


class ContextProviderRegistry:
    """
    Registry of context provider mappers keyed by provider kind.

    Unlike a class-level registry, each instance holds its own mappers
    because mappers carry per-run state (the client provider).

    Example Usage:
        registry.register(HostedZoneContextProviderMapper(clients))
        registry.get("hosted-zone")           # -> the mapper
        registry.list_providers()             # ["hosted-zone"]
    """

    def __init__(self):
        self._mappers: Dict[str, 'ContextProviderMapper'] = {}

    def register(self, mapper: 'ContextProviderMapper') -> None:
        """
        Register a mapper under its ``provider_kind``.

        Registering the same mapper twice is allowed (idempotent); a
        different mapper for an already registered kind raises.

        Raises:
            ValueError: If the kind is already registered with another mapper
        """
        kind = mapper.provider_kind
        if kind in self._mappers:
            existing = self._mappers[kind]
            if existing is not mapper:
                raise ValueError(
                    f"Context provider '{kind}' is already registered with "
                    f"{type(existing).__name__}. Cannot re-register with {type(mapper).__name__}."
                )
            return

        self._mappers[kind] = mapper

    def get(self, kind: str) -> 'ContextProviderMapper':
        """
        Get the mapper registered for a provider kind.

        Raises:
            ContextProviderNotFoundError: If no mapper is registered for the kind.
        """
        if kind not in self._mappers:
            raise ContextProviderNotFoundError(kind, self.list_providers())
        return self._mappers[kind]

    def list_providers(self) -> list[str]:
        """List all registered provider kinds, sorted alphabetically."""
        return sorted(self._mappers.keys())

    def is_registered(self, kind: str) -> bool:
        return kind in self._mappers

    def clear(self) -> None:
        """Remove all registered mappers (used by tests)."""
        self._mappers.clear()
