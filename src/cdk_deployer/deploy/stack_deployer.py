"""
Application stack deployment.

StackDeployer decides what happens to a stack with ``plan``:

    DestroyIntent: the stack declares no resources -> the stack is deleted
    DeployIntent:  otherwise -> the stack is created or updated

and carries the intent out, waiting for CloudFormation to finish.

Parameter Merge (DeployIntent):
    1. Asset parameters
    2. Caller parameters the template declares (override 1)
    3. On update, Unchanged for every deployed key not set by 1 or 2

One StackDeployer is created per environment and reused for all its stacks.

Usage:
    deployer = StackDeployer(clients, environment, toolkit, tags={"team": "a"})
    deployer.deploy(stack_definition, asset_parameters)
    deployer.destroy(stack_definition)
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Union

from botocore.exceptions import BotoCoreError, ClientError

from cdk_deployer import constants as CONSTANTS
from cdk_deployer.assembly.models import ParameterValue, StackDefinition, TemplateRef
from cdk_deployer.aws import stacks as cfn
from cdk_deployer.aws.events import LoggingStackEventListener
from cdk_deployer.core.exceptions import DeploymentError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeployIntent:
    """Create or update ``stack`` with the given asset parameters."""

    stack: StackDefinition
    asset_parameters: Dict[str, ParameterValue] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class DestroyIntent:
    """Delete ``stack``, which no longer declares any resources."""

    stack: StackDefinition


StackIntent = Union[DeployIntent, DestroyIntent]


def merge_stack_parameters(
    declared: Iterable[str],
    asset_parameters: Mapping[str, ParameterValue],
    caller_parameters: Mapping[str, str],
    deployed_keys: Iterable[str] = ()
) -> Dict[str, ParameterValue]:
    """
    Merge the parameter values of one stack deployment.

    Args:
        declared: Parameter names the template declares
        asset_parameters: Values produced by asset publication
        caller_parameters: Explicit values; only declared names are used
        deployed_keys: Parameter keys of the deployed stack (empty on create)

    Returns:
        Parameter values by key; deployed keys not otherwise set are Unchanged.

    Example:
        >>> merge_stack_parameters(["A", "B"], {}, {"A": "1"}, ["A", "B"])
        {"A": ParameterValue(value="1"), "B": ParameterValue(use_previous=True)}
    """
    declared = set(declared)
    merged = dict(asset_parameters)

    for key, value in caller_parameters.items():
        if key in declared:
            merged[key] = ParameterValue.literal(value)

    for key in deployed_keys:
        if key not in merged:
            merged[key] = ParameterValue.unchanged()

    return merged


def _is_unchanged(before: cfn.Stack, after: cfn.Stack) -> bool:
    """True when an update was a no-op and the stack kept its previous state."""
    return (after["StackStatus"] == before["StackStatus"]
            and after.get("LastUpdatedTime") == before.get("LastUpdatedTime"))


class StackDeployer:
    """
    Deploys and destroys the stacks of one environment.

    Attributes:
        environment: The resolved environment all stacks are deployed to
        toolkit: ToolkitInfo of the environment (used for large templates)
        parameters: Caller parameters applied to every stack that declares them
        tags: Caller tags, merged over each stack's own tags
        notification_arns: SNS topics notified of stack events
    """

    def __init__(
        self,
        client_provider,
        environment,
        toolkit=None,
        parameters: Optional[Mapping[str, str]] = None,
        tags: Optional[Mapping[str, str]] = None,
        notification_arns: Optional[List[str]] = None,
        backoff: Optional[cfn.BackoffPolicy] = None
    ):
        self.client_provider = client_provider
        self.environment = environment
        self.toolkit = toolkit
        self.parameters = dict(parameters or {})
        self.tags = dict(tags or {})
        self.notification_arns = list(notification_arns or [])
        self.backoff = backoff
        self.client = client_provider.get_client("cloudformation", environment)

    # ==========================================
    # Planning
    # ==========================================

    def plan(
        self,
        stack: StackDefinition,
        asset_parameters: Optional[Mapping[str, ParameterValue]] = None
    ) -> StackIntent:
        """A stack without resources is destroyed; any other stack is deployed."""
        if not stack.resources:
            return DestroyIntent(stack)
        return DeployIntent(stack, dict(asset_parameters or {}))

    def deploy(
        self,
        stack: StackDefinition,
        asset_parameters: Optional[Mapping[str, ParameterValue]] = None
    ) -> Optional[cfn.Stack]:
        """
        Plan and carry out the deployment of a stack.

        Returns:
            The final described stack, or None if there was nothing to delete.

        Raises:
            DeploymentError: If the operation fails or ends rolled back
        """
        return self.execute(self.plan(stack, asset_parameters))

    def execute(self, intent: StackIntent) -> Optional[cfn.Stack]:
        stack_name = intent.stack.stack_name
        try:
            if isinstance(intent, DestroyIntent):
                logger.info(f"Stack {stack_name} declares no resources and will be destroyed")
                return self._destroy(intent.stack)
            return self._deploy(intent)
        except (ClientError, BotoCoreError) as e:
            raise DeploymentError(str(e), stack_name=stack_name, environment=self.environment, original_error=e)

    def destroy(self, stack: StackDefinition) -> Optional[cfn.Stack]:
        """
        Delete a stack and wait for the deletion.

        Raises:
            DeploymentError: If the stack does not reach DELETE_COMPLETE
        """
        try:
            return self._destroy(stack)
        except (ClientError, BotoCoreError) as e:
            raise DeploymentError(str(e), stack_name=stack.stack_name, environment=self.environment,
                                  original_error=e)

    # ==========================================
    # Operations
    # ==========================================

    def _await(self, stack: cfn.Stack, since: Optional[datetime] = None) -> cfn.Stack:
        return cfn.await_completion(
            self.client, stack, LoggingStackEventListener(stack["StackName"]), self.backoff, since=since
        )

    def _delete_and_await(self, existing: cfn.Stack) -> cfn.Stack:
        started = datetime.now(timezone.utc)
        result = self._await(cfn.delete_stack(self.client, existing["StackId"]), since=started)
        if result["StackStatus"] != "DELETE_COMPLETE":
            raise DeploymentError(
                f"The stack deletion ended in {result['StackStatus']}",
                stack_name=existing["StackName"], environment=self.environment
            )
        return result

    def _find_settled(self, stack_name: str) -> Optional[cfn.Stack]:
        """Find the stack, waiting out any operation in progress."""
        existing = cfn.find_stack(self.client, stack_name)
        if existing is not None and cfn.is_in_progress(existing):
            logger.info(f"Waiting for the operation in progress on {stack_name} ({existing['StackStatus']})")
            existing = self._await(existing)
        if cfn.is_deleted(existing):
            return None
        return existing

    def _deploy(self, intent: DeployIntent) -> cfn.Stack:
        stack = intent.stack
        existing = self._find_settled(stack.stack_name)

        if existing is not None and cfn.is_rollback_terminal(existing):
            logger.warning(f"Stack {stack.stack_name} is in {existing['StackStatus']} and will be "
                           f"deleted before it is created again")
            self._delete_and_await(existing)
            existing = None

        if existing is not None and cfn.is_awaiting_review(existing):
            raise DeploymentError(
                f"The stack is in {existing['StackStatus']} with a change set that was never executed; "
                "execute the change set or delete the stack first",
                stack_name=stack.stack_name, environment=self.environment
            )

        if existing is not None and cfn.is_failed(existing):
            raise DeploymentError(
                f"The stack is in the failed state {existing['StackStatus']}",
                stack_name=stack.stack_name, environment=self.environment
            )

        parameters = merge_stack_parameters(
            stack.parameters, intent.asset_parameters, self.parameters, cfn.get_parameter_keys(existing)
        )
        tags = dict(stack.tags)
        tags.update(self.tags)
        template = self._template_ref(stack)

        started = datetime.now(timezone.utc)
        if existing is None:
            logger.info(f"Creating stack {stack.stack_name}, environment={self.environment.name}")
            result = cfn.create_stack(self.client, stack.stack_name, template, parameters, tags,
                                      self.notification_arns)
        else:
            logger.info(f"Updating stack {stack.stack_name}, environment={self.environment.name}")
            result = cfn.update_stack(self.client, stack.stack_name, template, parameters, tags,
                                      self.notification_arns)
            if _is_unchanged(existing, result):
                return result

        result = self._await(result, since=started)
        if not cfn.is_completed(result):
            raise DeploymentError(
                f"The stack deployment ended in {result['StackStatus']}",
                stack_name=stack.stack_name, environment=self.environment
            )

        logger.info(f"✓ Stack {stack.stack_name} deployed ({result['StackStatus']})")
        return result

    def _destroy(self, stack: StackDefinition) -> Optional[cfn.Stack]:
        existing = self._find_settled(stack.stack_name)
        if existing is None:
            logger.info(f"Stack {stack.stack_name} does not exist, nothing to destroy")
            return None

        logger.info(f"Destroying stack {stack.stack_name}, environment={self.environment.name}")
        result = self._delete_and_await(existing)
        logger.info(f"✓ Stack {stack.stack_name} destroyed")
        return result

    # ==========================================
    # Templates
    # ==========================================

    def _template_ref(self, stack: StackDefinition) -> TemplateRef:
        """Inline body, or an S3 URL in the toolkit bucket for large templates."""
        body = json.dumps(stack.template, indent=1)
        encoded = body.encode("utf-8")
        if len(encoded) <= CONSTANTS.TEMPLATE_BODY_MAX_SIZE:
            return TemplateRef.from_body(body)

        if self.toolkit is None or not self.toolkit.bucket_name:
            raise DeploymentError(
                f"The template is {len(encoded)} bytes, larger than {CONSTANTS.TEMPLATE_BODY_MAX_SIZE}, "
                "and there is no toolkit bucket to upload it to",
                stack_name=stack.stack_name, environment=self.environment
            )

        key = f"cdk/{stack.stack_name}/{hashlib.sha256(encoded).hexdigest()}.json"
        s3 = self.client_provider.get_client("s3", self.environment)
        s3.put_object(Bucket=self.toolkit.bucket_name, Key=key, Body=encoded)
        logger.debug(f"Uploaded the template of {stack.stack_name} to s3://{self.toolkit.bucket_name}/{key}")

        domain = self.toolkit.bucket_domain_name or f"{self.toolkit.bucket_name}.s3.amazonaws.com"
        return TemplateRef.from_url(f"https://{domain}/{key}")
