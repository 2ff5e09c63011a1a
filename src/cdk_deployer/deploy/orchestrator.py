"""
Deployment drivers: synth, bootstrap, deploy and destroy.

These are the entry points used by the CLI. Each takes a DeployerConfig and
an optional DeploymentSession holding the collaborators shared by one run
(environment resolver, client cache, process runner).

Ordering:
    deploy:  bootstrap every environment first, then stacks in dependency order
    destroy: stacks in reverse dependency order

Usage:
    config = load_deployer_config(Path("."))
    definition = synth(config, ["node", "bin/app.js"])
    deploy(definition, config)
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from cdk_deployer.assembly.manifest import load_cloud_definition
from cdk_deployer.assembly.models import CloudDefinition, StackDefinition
from cdk_deployer.aws.clients import AwsClientProvider
from cdk_deployer.aws.environment import EnvironmentResolver
from cdk_deployer.aws.stacks import BackoffPolicy
from cdk_deployer.context import create_context_providers
from cdk_deployer.context.synthesizer import Synthesizer
from cdk_deployer.core.context import DeployerConfig, ToolkitConfiguration
from cdk_deployer.core.protocols import ProcessRunner
from cdk_deployer.process import SubprocessRunner
from .assets import AssetDeployer
from .bootstrap import BootstrapOrchestrator, ToolkitInfo
from .publishers import DockerImageAssetPublisher, FileAssetPublisher
from .stack_deployer import DeployIntent, StackDeployer

logger = logging.getLogger(__name__)


@dataclass
class DeploymentSession:
    """
    Collaborators shared by every step of one invocation.

    Attributes:
        resolver: Resolves and caches environments
        client_provider: Caches boto3 clients per environment
        process_runner: Runs the cloud application and docker
    """

    resolver: EnvironmentResolver
    client_provider: AwsClientProvider = field(default_factory=AwsClientProvider)
    process_runner: ProcessRunner = field(default_factory=SubprocessRunner)

    @classmethod
    def from_config(cls, config: DeployerConfig) -> 'DeploymentSession':
        return cls(resolver=EnvironmentResolver(profile=config.profile, endpoint_url=config.endpoint_url))


def _session(config: DeployerConfig, session: Optional[DeploymentSession]) -> DeploymentSession:
    return session if session is not None else DeploymentSession.from_config(config)


def _backoff(config: DeployerConfig) -> BackoffPolicy:
    return BackoffPolicy(initial_delay=config.poll_initial_delay, max_delay=config.poll_max_delay)


def select_stacks(definition: CloudDefinition, config: DeployerConfig) -> List[StackDefinition]:
    """
    The stacks of the definition this invocation acts on, in definition order.

    Selected names the definition does not contain are logged and ignored.
    """
    for name in config.stacks:
        if definition.get_stack(name) is None:
            logger.warning(f"Stack '{name}' is not defined by the cloud assembly and is ignored")
    return [stack for stack in definition.stacks if config.is_selected(stack.stack_name)]


# ==========================================
# Drivers
# ==========================================

def synth(
    config: DeployerConfig,
    app_command: Optional[List[str]] = None,
    cwd: Optional[Path] = None,
    session: Optional[DeploymentSession] = None
) -> CloudDefinition:
    """
    Synthesize the cloud application, or load an existing cloud assembly.

    Without ``app_command`` the cloud assembly directory is read as is.
    """
    if not app_command:
        logger.info(f"Loading the cloud assembly from {config.cloud_assembly_directory}")
        return load_cloud_definition(config.cloud_assembly_directory)

    session = _session(config, session)
    synthesizer = Synthesizer(
        registry=create_context_providers(session.client_provider, session.resolver),
        process_runner=session.process_runner,
        resolver=session.resolver,
        max_rounds=config.max_context_rounds,
    )
    return synthesizer.synthesize(app_command, config.cloud_assembly_directory, config.context_file, cwd)


def bootstrap(
    definition: CloudDefinition,
    config: DeployerConfig,
    session: Optional[DeploymentSession] = None
) -> Dict[str, ToolkitInfo]:
    """
    Ensure the toolkit stack in every environment of the selected stacks.

    Returns:
        ToolkitInfo by resolved environment name.
    """
    session = _session(config, session)
    orchestrator = BootstrapOrchestrator(
        session.client_provider,
        session.resolver,
        toolkit=ToolkitConfiguration(config.toolkit_stack_name),
        default_version=config.default_bootstrap_version,
        parameters=config.bootstrap_parameters,
        tags=config.bootstrap_tags,
        backoff=_backoff(config),
    )
    return orchestrator.bootstrap_stacks(select_stacks(definition, config))


def deploy(
    definition: CloudDefinition,
    config: DeployerConfig,
    session: Optional[DeploymentSession] = None
) -> None:
    """
    Deploy the selected stacks.

    Every environment is bootstrapped before the first stack is touched.
    Stacks are then processed one by one in definition order: assets are
    published, then the stack is created, updated or, when it declares no
    resources, destroyed. The first failure stops the run.
    """
    session = _session(config, session)
    stacks = select_stacks(definition, config)
    if not stacks:
        logger.info("No stacks to deploy")
        return

    toolkits = bootstrap(definition, config, session)
    assets = AssetDeployer(
        FileAssetPublisher(session.client_provider),
        DockerImageAssetPublisher(session.client_provider, session.process_runner),
    )
    deployers: Dict[str, StackDeployer] = {}

    for stack in stacks:
        environment = session.resolver.resolve(stack.environment)
        if environment.name not in deployers:
            deployers[environment.name] = StackDeployer(
                session.client_provider,
                environment,
                toolkit=toolkits.get(environment.name),
                parameters=config.parameters,
                tags=config.tags,
                notification_arns=config.notification_arns,
                backoff=_backoff(config),
            )
        deployer = deployers[environment.name]

        intent = deployer.plan(stack)
        if isinstance(intent, DeployIntent):
            asset_parameters = assets.publish_stack_assets(stack, environment, toolkits.get(environment.name))
            intent = deployer.plan(stack, asset_parameters)
        deployer.execute(intent)

    logger.info(f"✓ Deployed {len(stacks)} stack(s)")


def destroy(
    definition: CloudDefinition,
    config: DeployerConfig,
    session: Optional[DeploymentSession] = None
) -> None:
    """Delete the selected stacks, dependents before their dependencies."""
    session = _session(config, session)
    stacks = select_stacks(definition, config)
    deployers: Dict[str, StackDeployer] = {}

    for stack in reversed(stacks):
        environment = session.resolver.resolve(stack.environment)
        if environment.name not in deployers:
            deployers[environment.name] = StackDeployer(
                session.client_provider, environment, backoff=_backoff(config)
            )
        deployers[environment.name].destroy(stack)

    logger.info(f"✓ Destroyed {len(stacks)} stack(s)")
