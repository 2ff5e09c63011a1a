"""
Asset deployment.

AssetDeployer publishes the assets of a stack right before the stack is
deployed and returns the parameter values that bind legacy assets to the
stack's template parameters:

    bucket parameter -> toolkit bucket name
    key parameter    -> assets/<id>/||<hash><ext>
    hash parameter   -> source hash
    image parameter  -> <repository>:<tag>

Each (environment, asset, destination) is published at most once per run,
so assets shared by several stacks are uploaded once.
"""

import logging
from typing import Dict, Set, Tuple

from cdk_deployer import constants as CONSTANTS
from cdk_deployer.assembly.models import FileAsset, ImageAsset, ParameterValue, StackDefinition
from cdk_deployer.core.exceptions import AssetPublicationError
from cdk_deployer.core.protocols import AssetPublisher

logger = logging.getLogger(__name__)


def file_destination(asset: FileAsset, environment, toolkit) -> Dict[str, str]:
    """
    Resolve where a file asset is published.

    Asset-manifest assets carry their own destination; legacy assets go to
    the toolkit bucket under ``assets/<id>/<hash><ext>``.
    """
    if asset.bucket_name:
        return {
            "bucketName": environment.resolve_variables(asset.bucket_name),
            "objectKey": environment.resolve_variables(asset.object_key),
        }

    if toolkit is None or not toolkit.bucket_name:
        raise AssetPublicationError(
            "the toolkit stack provides no asset bucket; bootstrap the environment first",
            asset.id, environment=environment
        )
    return {"bucketName": toolkit.bucket_name, "objectKey": f"{asset.legacy_prefix}{asset.file_name}"}


def image_destination(asset: ImageAsset, environment, toolkit) -> Dict[str, str]:
    """Resolve the repository and tag an image asset is pushed to."""
    repository = asset.repository_name
    if repository:
        repository = environment.resolve_variables(repository)
    elif toolkit is not None and toolkit.image_repository_name:
        repository = toolkit.image_repository_name
    else:
        raise AssetPublicationError(
            "the toolkit stack provides no image repository; bootstrap the environment first",
            asset.id, environment=environment
        )

    tag = environment.resolve_variables(asset.image_tag) if asset.image_tag else asset.id
    return {"repositoryName": repository, "imageTag": tag}


def file_asset_parameters(asset: FileAsset, destination: Dict[str, str]) -> Dict[str, ParameterValue]:
    parameters = {}
    if asset.bucket_parameter:
        parameters[asset.bucket_parameter] = ParameterValue.literal(destination["bucketName"])
    if asset.key_parameter:
        parameters[asset.key_parameter] = ParameterValue.literal(
            f"{asset.legacy_prefix}{CONSTANTS.ASSET_PREFIX_SEPARATOR}{asset.file_name}"
        )
    if asset.hash_parameter:
        parameters[asset.hash_parameter] = ParameterValue.literal(asset.source_hash or asset.id)
    return parameters


def image_asset_parameters(asset: ImageAsset, destination: Dict[str, str]) -> Dict[str, ParameterValue]:
    if not asset.image_name_parameter:
        return {}
    return {
        asset.image_name_parameter: ParameterValue.literal(
            f"{destination['repositoryName']}:{destination['imageTag']}"
        )
    }


class AssetDeployer:
    """
    Publishes stack assets once per run.

    Attributes:
        file_publisher: Publisher for FileAsset
        image_publisher: Publisher for ImageAsset
    """

    def __init__(self, file_publisher: AssetPublisher, image_publisher: AssetPublisher):
        self.file_publisher = file_publisher
        self.image_publisher = image_publisher
        self._published: Set[Tuple] = set()

    def publish_stack_assets(
        self,
        stack: StackDefinition,
        environment,
        toolkit=None
    ) -> Dict[str, ParameterValue]:
        """
        Publish every asset of a stack.

        Args:
            stack: The stack about to be deployed
            environment: Its resolved environment
            toolkit: ToolkitInfo of the environment (needed by legacy assets)

        Returns:
            Parameter values for the stack's legacy asset parameters.

        Raises:
            AssetPublicationError: If any asset fails to publish
        """
        parameters: Dict[str, ParameterValue] = {}
        try:
            for asset in stack.file_assets:
                destination = file_destination(asset, environment, toolkit)
                self._publish_once(self.file_publisher, asset, environment, destination)
                parameters.update(file_asset_parameters(asset, destination))

            for image in stack.image_assets:
                destination = image_destination(image, environment, toolkit)
                self._publish_once(self.image_publisher, image, environment, destination)
                parameters.update(image_asset_parameters(image, destination))
        except AssetPublicationError as e:
            raise AssetPublicationError(
                e.reason, e.asset_id, stack_name=stack.stack_name, environment=environment,
                original_error=e.original_error
            ) from e

        return parameters

    def _publish_once(
        self,
        publisher: AssetPublisher,
        asset,
        environment,
        destination: Dict[str, str]
    ) -> None:
        identity = (environment.name, type(asset).__name__, asset.id, tuple(sorted(destination.items())))
        if identity in self._published:
            logger.debug(f"Asset {asset.id} already published in this run")
            return

        publisher.publish(asset, environment, destination)
        self._published.add(identity)

    @property
    def published_count(self) -> int:
        return len(self._published)
