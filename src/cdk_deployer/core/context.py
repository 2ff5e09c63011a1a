"""
Deployer configuration classes.

Instead of reading environment flags or module globals at call time, every
component receives its settings explicitly: the drivers get a
DeployerConfig, and the orchestrators get the pieces they need in their
constructors (e.g. ``default_bootstrap_version``).

Lifecycle:
    1. Loaded once at startup by ``load_deployer_config``
    2. Passed to the synth/bootstrap/deploy/destroy drivers
    3. Never mutated afterwards
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from cdk_deployer import constants as CONSTANTS


@dataclass
class DeployerConfig:
    """
    Settings for one deployer invocation.

    Attributes:
        toolkit_stack_name: Name of the toolkit (bootstrap) stack
        profile: Optional AWS profile used for credentials and defaults
        endpoint_url: Optional endpoint override applied to every client
        cloud_assembly_directory: Directory holding manifest.json
        context_file: Persisted context file (cdk.context.json)
        stacks: Stack names to act on; empty means all stacks
        parameters: Explicit stack parameters applied to every stack
        tags: Tags attached to every deployed stack
        notification_arns: SNS topics notified of stack events
        bootstrap_parameters: Parameters for the toolkit stack
        bootstrap_tags: Tags for the toolkit stack
        default_bootstrap_version: Toolkit version required by stacks that declare none
        max_context_rounds: Upper bound on synthesis rounds while resolving context
        poll_initial_delay: First wait (seconds) when polling a stack operation
        poll_max_delay: Longest wait (seconds) between two polls
        mode: "DEBUG" enables debug logging and stack traces
    """

    toolkit_stack_name: str = CONSTANTS.DEFAULT_TOOLKIT_STACK_NAME
    profile: Optional[str] = None
    endpoint_url: Optional[str] = None
    cloud_assembly_directory: Path = Path(CONSTANTS.CLOUD_ASSEMBLY_DIR_NAME)
    context_file: Path = Path(CONSTANTS.CONTEXT_FILE_NAME)

    stacks: List[str] = field(default_factory=list)
    parameters: Dict[str, str] = field(default_factory=dict)
    tags: Dict[str, str] = field(default_factory=dict)
    notification_arns: List[str] = field(default_factory=list)

    bootstrap_parameters: Dict[str, str] = field(default_factory=dict)
    bootstrap_tags: Dict[str, str] = field(default_factory=dict)
    default_bootstrap_version: int = 0

    max_context_rounds: int = CONSTANTS.DEFAULT_MAX_CONTEXT_ROUNDS
    poll_initial_delay: float = CONSTANTS.DEFAULT_POLL_INITIAL_DELAY
    poll_max_delay: float = CONSTANTS.DEFAULT_POLL_MAX_DELAY

    mode: str = "INFO"

    @property
    def is_debug(self) -> bool:
        return self.mode.upper() == "DEBUG"

    def is_selected(self, stack_name: str) -> bool:
        """
        Check if a stack takes part in this invocation.

        Example:
            >>> DeployerConfig(stacks=[]).is_selected("Any")
            True
            >>> DeployerConfig(stacks=["A"]).is_selected("B")
            False
        """
        return not self.stacks or stack_name in self.stacks


@dataclass(frozen=True)
class ToolkitConfiguration:
    """Identifies the toolkit stack application stacks rely on for assets and large templates."""

    stack_name: str = CONSTANTS.DEFAULT_TOOLKIT_STACK_NAME
