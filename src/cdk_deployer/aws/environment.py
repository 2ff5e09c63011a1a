"""
Environment resolution.

Turns a symbolic environment such as ``aws://123456789012/eu-central-1`` or
``aws://unknown-account/unknown-region`` into a ResolvedEnvironment holding
the partition, region, account and credentials.

Placeholders are substituted with the resolver's default account and region,
which are looked up once (STS caller identity and the session region) and
then cached on the resolver for the rest of the run. Resolved environments
are cached per symbolic environment, so every stack in the same environment
shares one credential resolution.

Usage:
    resolver = EnvironmentResolver(profile="dev", endpoint_url=None)
    environment = resolver.resolve("aws://unknown-account/eu-central-1")
    print(environment.name)  # "aws://123456789012/eu-central-1"
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import boto3
from botocore.credentials import ReadOnlyCredentials
from botocore.exceptions import BotoCoreError, ClientError, ProfileNotFound

from cdk_deployer import constants as CONSTANTS
from cdk_deployer.core.exceptions import EnvironmentResolutionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedEnvironment:
    """
    A concrete execution environment.

    Attributes:
        partition: Partition id (e.g. "aws", "aws-cn")
        region: Region id (e.g. "eu-central-1")
        account: Account id
        credentials: Frozen credentials used for every client in this environment
        endpoint_url: Optional endpoint override (e.g. a local emulator)
    """

    partition: str
    region: str
    account: str
    credentials: ReadOnlyCredentials = field(repr=False, compare=False)
    endpoint_url: Optional[str] = None

    @property
    def name(self) -> str:
        return f"{self.partition}://{self.account}/{self.region}"

    def resolve_variables(self, value: str) -> str:
        """
        Substitute ${AWS::Region}, ${AWS::AccountId} and ${AWS::Partition}.

        Example:
            >>> env.resolve_variables("cdk-assets-${AWS::AccountId}-${AWS::Region}")
            "cdk-assets-123456789012-eu-central-1"
        """
        return (value.replace("${AWS::Region}", self.region)
                     .replace("${AWS::AccountId}", self.account)
                     .replace("${AWS::Partition}", self.partition))

    def client_kwargs(self) -> Dict[str, Optional[str]]:
        """Keyword arguments for ``boto3.client`` scoped to this environment."""
        kwargs = {
            "region_name": self.region,
            "aws_access_key_id": self.credentials.access_key,
            "aws_secret_access_key": self.credentials.secret_key,
            "aws_session_token": self.credentials.token,
        }
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url
        return kwargs

    def __str__(self) -> str:
        return self.name


def parse_environment(environment: str) -> Tuple[str, str]:
    """
    Split a symbolic environment into (account, region).

    Raises:
        EnvironmentResolutionError: If the value is not ``aws://<account>/<region>``
    """
    if not environment or not environment.startswith(CONSTANTS.ENVIRONMENT_SCHEME):
        raise EnvironmentResolutionError(f"Invalid environment '{environment}', expected aws://<account>/<region>")

    parts = environment[len(CONSTANTS.ENVIRONMENT_SCHEME):].split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise EnvironmentResolutionError(f"Invalid environment '{environment}', expected aws://<account>/<region>")

    return parts[0], parts[1]


def build_environment(account: Optional[str], region: Optional[str]) -> str:
    """
    Build a symbolic environment, using placeholders for missing parts.

    Example:
        >>> build_environment(None, "eu-west-1")
        "aws://unknown-account/eu-west-1"
    """
    return (f"{CONSTANTS.ENVIRONMENT_SCHEME}{account or CONSTANTS.UNKNOWN_ACCOUNT}"
            f"/{region or CONSTANTS.UNKNOWN_REGION}")


class EnvironmentResolver:
    """
    Resolves symbolic environments using one profile and endpoint override.

    One resolver is created per invocation; it owns the cache of resolved
    environments and of the default account/region lookup.
    """

    def __init__(
        self,
        profile: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        session: Optional[boto3.Session] = None
    ):
        self.profile = profile
        self.endpoint_url = endpoint_url
        self._session = session
        self._resolved: Dict[str, ResolvedEnvironment] = {}
        self._defaults_loaded = False
        self._default_account: Optional[str] = None

    @property
    def session(self) -> boto3.Session:
        if self._session is None:
            try:
                self._session = boto3.Session(profile_name=self.profile)
            except ProfileNotFound as e:
                raise EnvironmentResolutionError(
                    f"Unable to load profile '{self.profile}': {e}", original_error=e
                )
        return self._session

    @property
    def default_region(self) -> Optional[str]:
        """The region configured for the profile or via AWS_DEFAULT_REGION, if any."""
        return self.session.region_name

    @property
    def default_account(self) -> Optional[str]:
        """
        The account of the ambient credentials, looked up once via STS.

        A failed lookup is tolerated and yields None; only environments that
        actually need the default account fail later.
        """
        if not self._defaults_loaded:
            self._defaults_loaded = True
            self._default_account = self._lookup_default_account()
        return self._default_account

    def _lookup_default_account(self) -> Optional[str]:
        try:
            credentials = self.session.get_credentials()
        except BotoCoreError as e:
            logger.debug(f"Unable to load credentials, the default account is unknown: {e}")
            return None
        if credentials is None:
            logger.debug("No credentials available, the default account is unknown")
            return None

        try:
            sts = self.session.client(
                "sts",
                region_name=self.default_region or "us-east-1",
                endpoint_url=self.endpoint_url,
            )
            account = sts.get_caller_identity()["Account"]
        except (ClientError, BotoCoreError) as e:
            logger.debug(f"Unable to determine the default account: {e}")
            return None

        logger.debug(f"Default account: {account}")
        return account

    def resolve(self, environment: str) -> ResolvedEnvironment:
        """
        Resolve a symbolic environment.

        Args:
            environment: ``aws://<account>/<region>``, placeholders allowed

        Returns:
            The cached or newly resolved environment.

        Raises:
            EnvironmentResolutionError: If the account, region, partition or
                credentials cannot be determined
        """
        if environment in self._resolved:
            return self._resolved[environment]

        try:
            resolved = self._resolve(environment)
        except ProfileNotFound as e:
            raise EnvironmentResolutionError(
                f"Unable to load profile '{self.profile}': {e}", environment=environment, original_error=e
            )

        logger.debug(f"Resolved environment {environment} -> {resolved.name}")
        self._resolved[environment] = resolved
        return resolved

    def _resolve(self, environment: str) -> ResolvedEnvironment:
        account, region = parse_environment(environment)

        if region == CONSTANTS.UNKNOWN_REGION:
            region = self.default_region
            if not region:
                raise EnvironmentResolutionError(
                    "Unable to resolve the region: no region is specified for the stack and "
                    "no default region is configured", environment=environment
                )

        if account == CONSTANTS.UNKNOWN_ACCOUNT:
            account = self.default_account
            if not account:
                raise EnvironmentResolutionError(
                    "Unable to resolve the account: no account is specified for the stack and "
                    "the default account could not be determined", environment=environment
                )

        try:
            partition = self.session.get_partition_for_region(region)
        except BotoCoreError as e:
            raise EnvironmentResolutionError(
                f"Unable to determine the partition of region '{region}'",
                environment=environment, original_error=e
            )

        source = f" for profile '{self.profile}'" if self.profile else ""
        try:
            credentials = self.session.get_credentials()
            frozen = credentials.get_frozen_credentials() if credentials is not None else None
        except BotoCoreError as e:
            raise EnvironmentResolutionError(
                f"Unable to load credentials{source}: {e}", environment=environment, original_error=e
            )
        if frozen is None:
            raise EnvironmentResolutionError(f"Unable to load credentials{source}", environment=environment)

        return ResolvedEnvironment(
            partition=partition,
            region=region,
            account=account,
            credentials=frozen,
            endpoint_url=self.endpoint_url,
        )
