"""
AWS adapters: environment resolution, boto3 client caching and the
CloudFormation stack lifecycle.
"""

from .clients import AwsClientProvider, create_aws_client
from .environment import EnvironmentResolver, ResolvedEnvironment

__all__ = [
    "AwsClientProvider",
    "create_aws_client",
    "EnvironmentResolver",
    "ResolvedEnvironment",
]
