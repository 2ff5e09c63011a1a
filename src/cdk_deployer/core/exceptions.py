"""
Custom exceptions for the stack deployer.

This module defines the hierarchy of exceptions raised by synthesis,
bootstrapping, asset publication and stack deployment. Every error is fatal
for the current invocation; nothing is retried automatically.

Exception Hierarchy:
    CdkDeployerError (base)
    ├── ConfigurationError - Invalid deployer config or context file
    ├── CloudAssemblyError - Malformed manifest or dependency cycle
    ├── EnvironmentResolutionError - Account, region or credentials unavailable
    ├── ContextResolutionError - Context lookup failed or was ambiguous
    │   └── ContextProviderNotFoundError - Unknown provider kind
    ├── SynthesisError - Synthesis child process failed
    ├── UnsupportedVersionError - Required toolkit version unknown to this build
    ├── InvalidStateError - Deployed toolkit newer than this build
    ├── DeploymentError - Stack operation ended failed or rolled back
    ├── AssetPublicationError - Upload, build or push failed
    └── OperationCancelledError - A cancellable wait was cancelled
"""

from typing import Optional


class CdkDeployerError(Exception):
    """
    Base exception for all deployer errors.

    The stack name and environment are appended to the message so a failure
    can be located without additional tooling.

    Attributes:
        message: Human-readable error description
        stack_name: Optional name of the affected stack
        environment: Optional resolved (or symbolic) environment name
        original_error: Optional underlying exception
    """

    def __init__(
        self,
        message: str,
        stack_name: Optional[str] = None,
        environment: Optional[object] = None,
        original_error: Optional[Exception] = None
    ):
        self.message = message
        self.stack_name = stack_name
        self.environment = str(environment) if environment is not None else None
        self.original_error = original_error

        details = []
        if stack_name:
            details.append(f"stack={stack_name}")
        if self.environment:
            details.append(f"environment={self.environment}")

        if details:
            full_message = f"{message} [{', '.join(details)}]"
        else:
            full_message = message

        super().__init__(full_message)


class ConfigurationError(CdkDeployerError):
    """
    Raised when the deployer configuration or the context file is invalid.

    Example:
        >>> load_deployer_config(Path("."), "broken.json")
        ConfigurationError: Invalid JSON in configuration file: ... (file: broken.json)
    """

    def __init__(self, message: str, config_file: Optional[str] = None):
        self.config_file = config_file
        if config_file:
            message = f"{message} (file: {config_file})"
        super().__init__(message)


class CloudAssemblyError(CdkDeployerError):
    """Raised when the cloud assembly manifest cannot be turned into a CloudDefinition."""


class EnvironmentResolutionError(CdkDeployerError):
    """
    Raised when a symbolic environment cannot be resolved.

    This typically occurs when:
    - No explicit account and no default account is available
    - No explicit region and no default region is configured
    - The named profile does not exist or has no credentials
    """


class ContextResolutionError(CdkDeployerError):
    """
    Raised when a missing context value cannot be resolved.

    Attributes:
        provider: The context provider kind (e.g. "hosted-zone")
        key: The context key being resolved
        reason: The message without the key suffix
    """

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        key: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        self.provider = provider
        self.key = key
        self.reason = message
        if key:
            message = f"{message} [key={key}]"
        super().__init__(message, original_error=original_error)


class ContextProviderNotFoundError(ContextResolutionError):
    """
    Raised when no mapper is registered for a provider kind.

    Example:
        >>> registry.get("load-balancer")
        ContextProviderNotFoundError: Context provider 'load-balancer' not found. Available: ['ami', ...]
    """

    def __init__(self, provider_kind: str, available_providers: list[str]):
        self.available_providers = available_providers
        message = (
            f"Context provider '{provider_kind}' not found. "
            f"Available: {available_providers}"
        )
        super().__init__(message, provider=provider_kind)


class SynthesisError(CdkDeployerError):
    """Raised when the synthesis child process fails or produces no manifest."""


class UnsupportedVersionError(CdkDeployerError):
    """Raised when a stack requires a toolkit version this build cannot deploy."""


class InvalidStateError(CdkDeployerError):
    """Raised when the deployed toolkit stack is newer than this build understands."""


class DeploymentError(CdkDeployerError):
    """Raised when a create, update or delete ends in a failed or rolled-back state."""


class AssetPublicationError(CdkDeployerError):
    """
    Raised when a file or image asset fails to publish.

    Attributes:
        asset_id: Identifier of the asset that failed
        reason: The failure, without the asset and location details
    """

    def __init__(
        self,
        message: str,
        asset_id: str,
        stack_name: Optional[str] = None,
        environment: Optional[object] = None,
        original_error: Optional[Exception] = None
    ):
        self.asset_id = asset_id
        self.reason = message
        message = f"Failed to publish asset '{asset_id}': {message}"
        super().__init__(message, stack_name=stack_name, environment=environment,
                         original_error=original_error)


class OperationCancelledError(CdkDeployerError):
    """Raised when a cancellable stack wait is cancelled by the caller."""
