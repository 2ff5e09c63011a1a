"""
AWS SDK client management.

Clients are created lazily and cached per (service, environment) for the
lifetime of one invocation, so every stack in an environment reuses the same
connections and credentials.

Usage:
    clients = AwsClientProvider()
    cloudformation = clients.get_client("cloudformation", environment)
"""

from typing import Any, Dict, Tuple, TYPE_CHECKING

import boto3

if TYPE_CHECKING:
    from .environment import ResolvedEnvironment


def create_aws_client(service_name: str, environment: 'ResolvedEnvironment') -> Any:
    """
    Create a boto3 client for a service in a resolved environment.

    The environment's credentials, region and endpoint override are applied.
    """
    return boto3.client(service_name, **environment.client_kwargs())


class AwsClientProvider:
    """
    Per-run cache of boto3 clients.

    Tests replace this with a fake exposing the same ``get_client`` method.
    """

    def __init__(self):
        self._clients: Dict[Tuple[str, str], Any] = {}

    def get_client(self, service_name: str, environment: 'ResolvedEnvironment') -> Any:
        key = (service_name, environment.name)
        if key not in self._clients:
            self._clients[key] = create_aws_client(service_name, environment)
        return self._clients[key]
