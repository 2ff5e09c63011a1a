"""
Shared base class for context provider mappers.

Every mapper performs one read-only lookup in the environment named by the
query's ``account`` and ``region``. The base class builds that environment,
hands out cached clients for it, and turns SDK failures and empty results
into ContextResolutionError so the resolution loop only ever sees one error
type.
"""

import logging
from typing import Any, Dict, TYPE_CHECKING

from botocore.exceptions import BotoCoreError, ClientError

from cdk_deployer.aws.environment import build_environment
from cdk_deployer.core.exceptions import ContextResolutionError

if TYPE_CHECKING:
    from cdk_deployer.aws.clients import AwsClientProvider
    from cdk_deployer.aws.environment import EnvironmentResolver

logger = logging.getLogger(__name__)


class BaseContextProviderMapper:
    """
    Base class for the mappers registered in the ContextProviderRegistry.

    Subclasses set ``provider_kind`` and implement ``_lookup``.
    """

    provider_kind: str = ""

    def __init__(self, client_provider: 'AwsClientProvider', resolver: 'EnvironmentResolver'):
        self._client_provider = client_provider
        self._resolver = resolver

    def _client(self, service_name: str, query: Dict[str, Any]) -> Any:
        environment = self._resolver.resolve(build_environment(query.get("account"), query.get("region")))
        return self._client_provider.get_client(service_name, environment)

    def _fail(self, message: str, query: Dict[str, Any]) -> ContextResolutionError:
        return ContextResolutionError(message, provider=self.provider_kind, key=query.get("key"))

    def get_context_value(self, query: Dict[str, Any]) -> Any:
        """
        Resolve a context value.

        Raises:
            ContextResolutionError: If the lookup fails or yields no value
        """
        try:
            value = self._lookup(query)
        except (ClientError, BotoCoreError) as e:
            raise ContextResolutionError(
                f"The '{self.provider_kind}' context lookup failed: {e}",
                provider=self.provider_kind, key=query.get("key"), original_error=e
            )

        if value is None:
            raise self._fail(f"The '{self.provider_kind}' context lookup returned no value", query)

        logger.debug(f"Resolved '{self.provider_kind}' context: {value}")
        return value

    def _lookup(self, query: Dict[str, Any]) -> Any:
        raise NotImplementedError
