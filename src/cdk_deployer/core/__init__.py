"""
Core abstractions for the stack deployer.

This package provides the configuration model, the error taxonomy, the
collaborator protocols and the context provider registry shared by the
synthesis and deployment components.

Modules:
    protocols: Interface definitions (ContextProviderMapper, ProcessRunner, ...)
    context: DeployerConfig and ToolkitConfiguration
    registry: ContextProviderRegistry for provider-kind dispatch
    config_loader: Configuration and context file loading
    exceptions: Custom exception types

Usage:
    from cdk_deployer.core import DeployerConfig, ContextProviderRegistry
    from cdk_deployer.core.config_loader import load_deployer_config

    config = load_deployer_config(Path("."))
"""

from .protocols import ContextProviderMapper, ProcessRunner, StackEventListener, AssetPublisher
from .context import DeployerConfig, ToolkitConfiguration
from .registry import ContextProviderRegistry
from .exceptions import (
    CdkDeployerError,
    ConfigurationError,
    CloudAssemblyError,
    EnvironmentResolutionError,
    ContextResolutionError,
    ContextProviderNotFoundError,
    SynthesisError,
    UnsupportedVersionError,
    InvalidStateError,
    DeploymentError,
    AssetPublicationError,
    OperationCancelledError,
)

__all__ = [
    # Protocols
    "ContextProviderMapper",
    "ProcessRunner",
    "StackEventListener",
    "AssetPublisher",
    # Configuration
    "DeployerConfig",
    "ToolkitConfiguration",
    # Registry
    "ContextProviderRegistry",
    # Exceptions
    "CdkDeployerError",
    "ConfigurationError",
    "CloudAssemblyError",
    "EnvironmentResolutionError",
    "ContextResolutionError",
    "ContextProviderNotFoundError",
    "SynthesisError",
    "UnsupportedVersionError",
    "InvalidStateError",
    "DeploymentError",
    "AssetPublicationError",
    "OperationCancelledError",
]
