"""
Synthesis with iterative context resolution.

The cloud application is run as a child process that writes a cloud
assembly. When it needs values only a lookup can provide (availability
zones, VPC ids, ...) it lists them as ``missing`` in the manifest. The
Synthesizer resolves those through the registered context provider mappers
and runs the application again, until nothing is missing.

Round Structure:
    1. Run the application with the current context (CDK_CONTEXT_JSON)
    2. No missing entries -> done
    3. Resolve every missing entry via registry.get(provider)
    4. Merge the values into the context and go back to 1

The loop is bounded by ``max_rounds``, and a round that asks again for
exactly the keys resolved in the previous round fails right away.

Usage:
    synthesizer = Synthesizer(registry, SubprocessRunner(), resolver)
    definition = synthesizer.synthesize(["node", "bin/app.js"], Path("cdk.out"),
                                        Path("cdk.context.json"))
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Set

from cdk_deployer import constants as CONSTANTS
from cdk_deployer.assembly.manifest import load_cloud_definition, read_missing_context
from cdk_deployer.assembly.models import CloudDefinition, MissingContext
from cdk_deployer.core.config_loader import load_context, save_context
from cdk_deployer.core.exceptions import (
    ContextResolutionError,
    EnvironmentResolutionError,
    SynthesisError,
)
from cdk_deployer.core.protocols import ProcessRunner
from cdk_deployer.core.registry import ContextProviderRegistry

logger = logging.getLogger(__name__)


def resolve_missing_context(
    registry: ContextProviderRegistry,
    missing: List[MissingContext]
) -> Dict[str, Any]:
    """
    Resolve missing context entries through their provider mappers.

    Later entries for the same key overwrite earlier ones.

    Raises:
        ContextResolutionError: If a provider is unknown or a lookup fails
    """
    resolved: Dict[str, Any] = {}
    for entry in missing:
        mapper = registry.get(entry.provider)
        try:
            resolved[entry.key] = mapper.get_context_value(entry.props)
        except ContextResolutionError as e:
            if e.key is not None:
                raise
            raise ContextResolutionError(
                e.reason, provider=e.provider or entry.provider, key=entry.key, original_error=e.original_error
            ) from e
        logger.info(f"✓ Resolved context '{entry.key}' ({entry.provider})")
    return resolved


class Synthesizer:
    """
    Runs the cloud application until its context is complete.

    Attributes:
        registry: Context provider mappers by provider kind
        process_runner: Runs the application command
        resolver: Supplies the default account and region for the child process
        max_rounds: Upper bound on synthesis runs
    """

    def __init__(
        self,
        registry: ContextProviderRegistry,
        process_runner: ProcessRunner,
        resolver,
        max_rounds: int = CONSTANTS.DEFAULT_MAX_CONTEXT_ROUNDS,
        environ: Optional[Mapping[str, str]] = None
    ):
        self.registry = registry
        self.process_runner = process_runner
        self.resolver = resolver
        self.max_rounds = max_rounds
        self._environ = os.environ if environ is None else environ

    def build_environment(self, output_directory: Path, context: Dict[str, Any]) -> Dict[str, str]:
        """
        Build the child process environment.

        Variables already set by the caller are kept, except CDK_CONTEXT_JSON
        which always reflects ``context``.

        Raises:
            EnvironmentResolutionError: If no default region is available
        """
        environment = dict(self._environ)
        environment.setdefault(CONSTANTS.OUTPUT_DIRECTORY_VARIABLE_NAME, str(output_directory))

        if CONSTANTS.DEFAULT_REGION_VARIABLE_NAME not in environment:
            region = self.resolver.default_region
            if not region:
                raise EnvironmentResolutionError(
                    "Unable to determine the default region; configure a region for the profile "
                    "or set AWS_DEFAULT_REGION"
                )
            environment[CONSTANTS.DEFAULT_REGION_VARIABLE_NAME] = region

        if CONSTANTS.DEFAULT_ACCOUNT_VARIABLE_NAME not in environment:
            account = self.resolver.default_account
            if account:
                environment[CONSTANTS.DEFAULT_ACCOUNT_VARIABLE_NAME] = account

        if context:
            environment[CONSTANTS.CONTEXT_VARIABLE_NAME] = json.dumps(context)
        else:
            environment.pop(CONSTANTS.CONTEXT_VARIABLE_NAME, None)

        return environment

    def _run_application(
        self,
        app_command: List[str],
        output_directory: Path,
        context: Dict[str, Any],
        cwd: Optional[Path]
    ) -> List[MissingContext]:
        environment = self.build_environment(output_directory, context)
        exit_code = self.process_runner.run(
            app_command, environment=environment, cwd=str(cwd) if cwd else None
        )
        if exit_code != 0:
            raise SynthesisError(f"The cloud application exited with code {exit_code}: {' '.join(app_command)}")

        if not (output_directory / CONSTANTS.MANIFEST_FILE_NAME).exists():
            raise SynthesisError(
                f"The cloud application did not write {CONSTANTS.MANIFEST_FILE_NAME} to {output_directory}"
            )
        return read_missing_context(output_directory)

    def synthesize(
        self,
        app_command: List[str],
        output_directory: Path,
        context_file: Path,
        cwd: Optional[Path] = None
    ) -> CloudDefinition:
        """
        Synthesize the application, resolving missing context along the way.

        Args:
            app_command: Command that runs the cloud application
            output_directory: Cloud assembly directory (CDK_OUTDIR)
            context_file: Persisted context, read first and updated on success
            cwd: Working directory for the application

        Returns:
            The CloudDefinition of the fully resolved cloud assembly.

        Raises:
            SynthesisError: If the application fails or writes no manifest
            ContextResolutionError: If context cannot be resolved or the loop
                stops making progress
        """
        context = load_context(context_file)
        persisted = dict(context)
        previously_resolved: Set[str] = set()

        for round_number in range(1, self.max_rounds + 1):
            logger.info(f"Synthesizing (round {round_number})...")
            missing = self._run_application(app_command, output_directory, context, cwd)
            if not missing:
                break

            missing_keys = sorted({entry.key for entry in missing})
            logger.info(f"Missing context: {missing_keys}")

            if set(missing_keys) == previously_resolved:
                raise ContextResolutionError(
                    f"The application keeps reporting the same context as missing after it was "
                    f"resolved: {missing_keys}"
                )
            if round_number == self.max_rounds:
                raise ContextResolutionError(
                    f"Context is still missing after {self.max_rounds} synthesis rounds: {missing_keys}"
                )

            resolved = resolve_missing_context(self.registry, missing)
            context.update(resolved)
            previously_resolved = set(resolved)

        if context != persisted:
            save_context(context_file, context)
            logger.info(f"✓ Saved context to {context_file}")

        definition = load_cloud_definition(output_directory)
        logger.info(f"✓ Synthesized stacks: {definition.stack_names}")
        return definition
