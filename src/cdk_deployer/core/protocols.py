"""
Protocol definitions for the stack deployer.

This module defines the structural interfaces of the collaborators the
orchestration core talks to. Using Python's Protocol (structural subtyping)
lets tests pass plain fakes or MagicMocks without inheritance.

Protocols:
    - ContextProviderMapper: resolves one kind of missing context value
    - ProcessRunner: runs an external command and returns its exit code
    - StackEventListener: receives stack events while a stack operation is awaited
    - AssetPublisher: publishes one kind of asset to its destination
"""

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable, TYPE_CHECKING

if TYPE_CHECKING:
    from cdk_deployer.assembly.models import FileAsset, ImageAsset
    from cdk_deployer.aws.environment import ResolvedEnvironment


@runtime_checkable
class ContextProviderMapper(Protocol):
    """
    Resolves a missing context value for a single provider kind.

    Each mapper is backed by a read-only remote lookup scoped to the
    environment named by the query's ``account`` and ``region``.

    Example Implementation:
        class SsmContextProviderMapper:
            provider_kind = "ssm"

            def get_context_value(self, query):
                client = self._clients.get_client("ssm", ...)
                return client.get_parameter(Name=query["parameterName"])["Parameter"]["Value"]
    """

    @property
    def provider_kind(self) -> str:
        """The provider kind this mapper is registered under (e.g. "ssm")."""
        ...

    def get_context_value(self, query: Dict[str, Any]) -> Any:
        """
        Resolve the context value for a query.

        Args:
            query: Provider-specific query properties from the manifest.

        Returns:
            A JSON-serializable context value.

        Raises:
            ContextResolutionError: If the lookup fails or is ambiguous.
        """
        ...


@runtime_checkable
class ProcessRunner(Protocol):
    """Runs an external command and reports its exit code."""

    def run(
        self,
        command: List[str],
        environment: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        input_text: Optional[str] = None
    ) -> int:
        """
        Run a command to completion.

        Args:
            command: Executable and arguments
            environment: Full environment map for the child (inherits when None)
            cwd: Working directory for the child
            input_text: Optional text written to the child's stdin

        Returns:
            The exit code of the process.
        """
        ...


@runtime_checkable
class StackEventListener(Protocol):
    """Receives stack events, oldest first, while an operation is in progress."""

    def on_event(self, event: Dict[str, Any]) -> None:
        ...


@runtime_checkable
class AssetPublisher(Protocol):
    """Publishes an asset to its resolved destination."""

    def publish(
        self,
        asset: 'FileAsset | ImageAsset',
        environment: 'ResolvedEnvironment',
        destination: Dict[str, str]
    ) -> None:
        ...
