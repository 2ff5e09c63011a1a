"""
Toolkit (bootstrap) stack management.

Before any asset is published or stack deployed in an environment, the
toolkit stack there must exist with at least the version the stacks
require. BootstrapOrchestrator checks that and deploys the bundled
template when needed.

Per Environment:
    1. required = max(default_version, stack.required_toolkit_version...)
    2. Find the toolkit stack; await it if an operation is in progress
    3. Rollback-terminal stack (failed first create) -> delete and await
    4. Failed stack, or one awaiting change set review -> DeploymentError
    5. Deployed version (BootstrapVersion output, 0 if absent) newer than
       TOOLKIT_STACK_VERSION -> InvalidStateError
    6. Absent or older than required -> create / update and await

A satisfied environment is only read, never deployed, so bootstrapping is
idempotent.

Usage:
    orchestrator = BootstrapOrchestrator(clients, resolver, default_version=0)
    toolkits = orchestrator.bootstrap_stacks(definition.stacks)
    toolkit = toolkits[resolved_environment.name]
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from importlib import resources
from typing import Dict, Mapping, Optional, Sequence, Tuple

import yaml
from botocore.exceptions import BotoCoreError, ClientError

from cdk_deployer import constants as CONSTANTS
from cdk_deployer.assembly.models import ParameterValue, StackDefinition, TemplateRef
from cdk_deployer.aws import stacks as cfn
from cdk_deployer.aws.events import LoggingStackEventListener
from cdk_deployer.core.context import ToolkitConfiguration
from cdk_deployer.core.exceptions import (
    DeploymentError,
    InvalidStateError,
    UnsupportedVersionError,
)

logger = logging.getLogger(__name__)


# ==========================================
# Bundled Template
# ==========================================

@dataclass(frozen=True)
class BootstrapTemplate:
    """The bundled toolkit template, its declared parameters and its version."""

    body: str
    parameters: Tuple[str, ...]
    version: int


def load_bootstrap_template() -> BootstrapTemplate:
    """
    Load the toolkit template shipped with the package.

    Raises:
        InvalidStateError: If the template's CdkBootstrapVersion value does not
            equal TOOLKIT_STACK_VERSION
    """
    resource = resources.files("cdk_deployer")
    for part in CONSTANTS.BOOTSTRAP_TEMPLATE_RESOURCE.split("/"):
        resource = resource.joinpath(part)
    body = resource.read_text(encoding="utf-8")

    document = yaml.safe_load(body)
    try:
        version = int(document["Resources"][CONSTANTS.BOOTSTRAP_VERSION_RESOURCE]["Properties"]["Value"])
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidStateError(f"The bundled bootstrap template declares no usable version: {e}",
                                original_error=e)

    if version != CONSTANTS.TOOLKIT_STACK_VERSION:
        raise InvalidStateError(
            f"The bundled bootstrap template declares version {version}, "
            f"expected {CONSTANTS.TOOLKIT_STACK_VERSION}"
        )

    return BootstrapTemplate(
        body=body,
        parameters=tuple((document.get("Parameters") or {}).keys()),
        version=version,
    )


# ==========================================
# Toolkit Info
# ==========================================

@dataclass(frozen=True)
class ToolkitInfo:
    """Outputs of a deployed toolkit stack."""

    stack_name: str
    bucket_name: Optional[str] = None
    bucket_domain_name: Optional[str] = None
    image_repository_name: Optional[str] = None
    version: int = 0

    @classmethod
    def from_stack(cls, stack: Mapping) -> 'ToolkitInfo':
        outputs = cfn.get_outputs(stack)
        return cls(
            stack_name=stack["StackName"],
            bucket_name=outputs.get(CONSTANTS.BUCKET_NAME_OUTPUT),
            bucket_domain_name=outputs.get(CONSTANTS.BUCKET_DOMAIN_NAME_OUTPUT),
            image_repository_name=outputs.get(CONSTANTS.IMAGE_REPOSITORY_NAME_OUTPUT),
            version=deployed_version(stack),
        )


def deployed_version(stack: Optional[Mapping]) -> int:
    """
    The BootstrapVersion output of a toolkit stack; 0 when absent.

    Raises:
        InvalidStateError: If the output is not an integer
    """
    value = cfn.get_outputs(stack).get(CONSTANTS.BOOTSTRAP_VERSION_OUTPUT)
    if value is None:
        return 0
    try:
        return int(value)
    except ValueError as e:
        raise InvalidStateError(f"The toolkit stack reports an invalid version: {value!r}", original_error=e)


def required_toolkit_version(stacks: Sequence[StackDefinition], default_version: int = 0) -> int:
    """
    The highest toolkit version any of the stacks requires.

    ``default_version`` applies to stacks that declare none and is also the
    floor of the result.
    """
    required = default_version
    for stack in stacks:
        version = stack.required_toolkit_version
        required = max(required, version if version is not None else default_version)
    return required


class BootstrapOrchestrator:
    """
    Ensures a sufficient toolkit stack in every environment.

    Attributes:
        client_provider: Per-environment boto3 client cache
        resolver: Resolves the stacks' symbolic environments
        toolkit: Toolkit stack name
        default_version: Version required by stacks that declare none
        parameters / tags: Caller-supplied toolkit parameters and tags
    """

    def __init__(
        self,
        client_provider,
        resolver,
        toolkit: ToolkitConfiguration = ToolkitConfiguration(),
        default_version: int = 0,
        parameters: Optional[Mapping[str, str]] = None,
        tags: Optional[Mapping[str, str]] = None,
        backoff: Optional[cfn.BackoffPolicy] = None,
        template_loader=load_bootstrap_template
    ):
        self.client_provider = client_provider
        self.resolver = resolver
        self.toolkit = toolkit
        self.default_version = default_version
        self.parameters = dict(parameters or {})
        self.tags = dict(tags or {})
        self.backoff = backoff
        self._template_loader = template_loader

    def bootstrap_stacks(self, stacks: Sequence[StackDefinition]) -> Dict[str, ToolkitInfo]:
        """
        Bootstrap every environment the stacks are deployed to.

        Returns:
            ToolkitInfo by resolved environment name.
        """
        by_environment: Dict[str, list] = {}
        environments = {}
        for stack in stacks:
            environment = self.resolver.resolve(stack.environment)
            environments[environment.name] = environment
            by_environment.setdefault(environment.name, []).append(stack)

        toolkits = {}
        for name, environment_stacks in by_environment.items():
            required = required_toolkit_version(environment_stacks, self.default_version)
            toolkits[name] = self.bootstrap(environments[name], required)
        return toolkits

    def bootstrap(self, environment, required_version: int) -> ToolkitInfo:
        """
        Ensure the toolkit stack in ``environment`` is at least ``required_version``.

        Raises:
            UnsupportedVersionError: If required_version exceeds TOOLKIT_STACK_VERSION
            InvalidStateError: If the deployed toolkit is newer than this build
            DeploymentError: If the toolkit stack is failed or its deployment fails
        """
        stack_name = self.toolkit.stack_name
        if required_version > CONSTANTS.TOOLKIT_STACK_VERSION:
            raise UnsupportedVersionError(
                f"The stacks require toolkit version {required_version}, but this deployer supports "
                f"up to {CONSTANTS.TOOLKIT_STACK_VERSION}",
                stack_name=stack_name, environment=environment
            )

        client = self.client_provider.get_client("cloudformation", environment)
        try:
            return self._bootstrap(client, environment, required_version)
        except (ClientError, BotoCoreError) as e:
            raise DeploymentError(
                f"Bootstrapping failed: {e}", stack_name=stack_name, environment=environment, original_error=e
            )

    def _await(self, client, stack, since: Optional[datetime] = None):
        return cfn.await_completion(
            client, stack, LoggingStackEventListener(stack["StackName"]), self.backoff, since=since
        )

    def _bootstrap(self, client, environment, required_version: int) -> ToolkitInfo:
        stack_name = self.toolkit.stack_name
        stack = cfn.find_stack(client, stack_name)

        if stack is not None and cfn.is_in_progress(stack):
            logger.info(f"Waiting for the toolkit stack operation in progress ({stack['StackStatus']}), "
                        f"environment={environment.name}")
            stack = self._await(client, stack)

        if stack is not None and cfn.is_rollback_terminal(stack):
            logger.warning(f"The toolkit stack is in {stack['StackStatus']} and will be deleted, "
                           f"environment={environment.name}")
            started = datetime.now(timezone.utc)
            stack = self._await(client, cfn.delete_stack(client, stack["StackId"]), since=started)
            if not cfn.is_deleted(stack):
                raise DeploymentError(
                    f"Unable to delete the broken toolkit stack ({stack['StackStatus']})",
                    stack_name=stack_name, environment=environment
                )

        if cfn.is_deleted(stack):
            stack = None

        if stack is not None and cfn.is_awaiting_review(stack):
            raise DeploymentError(
                f"The toolkit stack is in {stack['StackStatus']} with a change set that was never executed; "
                "execute the change set or delete the stack first",
                stack_name=stack_name, environment=environment
            )

        if stack is not None and cfn.is_failed(stack):
            raise DeploymentError(
                f"The toolkit stack is in the failed state {stack['StackStatus']}; repair or delete it first",
                stack_name=stack_name, environment=environment
            )

        version = deployed_version(stack)
        if version > CONSTANTS.TOOLKIT_STACK_VERSION:
            raise InvalidStateError(
                f"The deployed toolkit stack has version {version}, newer than the supported "
                f"{CONSTANTS.TOOLKIT_STACK_VERSION}",
                stack_name=stack_name, environment=environment
            )

        if stack is not None and version >= required_version:
            logger.info(f"✓ Toolkit stack is up to date (version {version}), environment={environment.name}")
            return ToolkitInfo.from_stack(stack)

        template = self._template_loader()
        parameters = self._parameters(template, stack)
        template_ref = TemplateRef.from_body(template.body)
        started = datetime.now(timezone.utc)

        if stack is None:
            logger.info(f"Creating the toolkit stack {stack_name}, environment={environment.name}")
            stack = cfn.create_stack(client, stack_name, template_ref, parameters, self.tags)
        else:
            logger.info(f"Updating the toolkit stack {stack_name} from version {version} to "
                        f"{template.version}, environment={environment.name}")
            stack = cfn.update_stack(client, stack_name, template_ref, parameters, self.tags)

        stack = self._await(client, stack, since=started)
        if not cfn.is_completed(stack):
            raise DeploymentError(
                f"The toolkit stack deployment ended in {stack['StackStatus']}",
                stack_name=stack_name, environment=environment
            )

        logger.info(f"✓ Toolkit stack {stack_name} deployed, environment={environment.name}")
        return ToolkitInfo.from_stack(stack)

    def _parameters(self, template: BootstrapTemplate, stack) -> Dict[str, ParameterValue]:
        """Caller literals, plus Unchanged for deployed keys the template still declares."""
        parameters: Dict[str, ParameterValue] = {}
        for key in cfn.get_parameter_keys(stack):
            if key in template.parameters:
                parameters[key] = ParameterValue.unchanged()

        for key, value in self.parameters.items():
            if key not in template.parameters:
                logger.warning(f"Ignoring unknown toolkit parameter '{key}'")
                continue
            parameters[key] = ParameterValue.literal(value)
        return parameters
