"""
Deployment components: toolkit bootstrap, asset publication, stack
deployment and the drivers tying them together.
"""

from .assets import AssetDeployer
from .bootstrap import BootstrapOrchestrator, ToolkitInfo, load_bootstrap_template
from .publishers import DockerImageAssetPublisher, FileAssetPublisher
from .stack_deployer import DeployIntent, DestroyIntent, StackDeployer, merge_stack_parameters

__all__ = [
    "AssetDeployer",
    "BootstrapOrchestrator",
    "ToolkitInfo",
    "load_bootstrap_template",
    "DockerImageAssetPublisher",
    "FileAssetPublisher",
    "DeployIntent",
    "DestroyIntent",
    "StackDeployer",
    "merge_stack_parameters",
]
