"""
Context resolution: provider mappers and the synthesis loop.

Provider kinds:
    availability-zones: AvailabilityZonesContextProviderMapper
    ssm:                SsmContextProviderMapper
    hosted-zone:        HostedZoneContextProviderMapper
    vpc-provider:       VpcContextProviderMapper
    ami:                AmiContextProviderMapper

Usage:
    registry = create_context_providers(AwsClientProvider(), resolver)
    registry.get("ssm").get_context_value({"account": "...", "region": "...",
                                           "parameterName": "/my/param"})
"""

from typing import Optional

from cdk_deployer.aws.clients import AwsClientProvider
from cdk_deployer.aws.environment import EnvironmentResolver
from cdk_deployer.core.registry import ContextProviderRegistry

from .ami import AmiContextProviderMapper
from .availability_zones import AvailabilityZonesContextProviderMapper
from .hosted_zone import HostedZoneContextProviderMapper
from .ssm import SsmContextProviderMapper
from .vpc import VpcContextProviderMapper

CONTEXT_PROVIDER_MAPPERS = (
    AvailabilityZonesContextProviderMapper,
    SsmContextProviderMapper,
    HostedZoneContextProviderMapper,
    VpcContextProviderMapper,
    AmiContextProviderMapper,
)


def create_context_providers(
    client_provider: AwsClientProvider,
    resolver: Optional[EnvironmentResolver] = None
) -> ContextProviderRegistry:
    """Build the registry holding one mapper per supported provider kind."""
    resolver = resolver or EnvironmentResolver()
    registry = ContextProviderRegistry()
    for mapper_class in CONTEXT_PROVIDER_MAPPERS:
        registry.register(mapper_class(client_provider, resolver))
    return registry


__all__ = [
    "AmiContextProviderMapper",
    "AvailabilityZonesContextProviderMapper",
    "HostedZoneContextProviderMapper",
    "SsmContextProviderMapper",
    "VpcContextProviderMapper",
    "CONTEXT_PROVIDER_MAPPERS",
    "create_context_providers",
]
