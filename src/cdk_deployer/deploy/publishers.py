"""
Asset publishers.

Publishers upload one asset to its already resolved destination and are
chosen by asset type:

    FileAsset  -> FileAssetPublisher         (S3)
    ImageAsset -> DockerImageAssetPublisher  (ECR via the docker CLI)

Both skip assets that are already present at the destination. Every
failure is raised as AssetPublicationError.
"""

import base64
import logging
import os
import tempfile
import zipfile
from pathlib import Path
from typing import Dict, List

from boto3.exceptions import Boto3Error
from botocore.exceptions import BotoCoreError, ClientError

from cdk_deployer import constants as CONSTANTS
from cdk_deployer.assembly.models import FileAsset, ImageAsset
from cdk_deployer.core.exceptions import AssetPublicationError
from cdk_deployer.core.protocols import ProcessRunner

logger = logging.getLogger(__name__)


def zip_directory(folder_path: Path, output_path: Path) -> Path:
    """Zip the contents of a directory; entries are relative to the directory."""
    with zipfile.ZipFile(output_path, 'w', zipfile.ZIP_DEFLATED) as zf:
        for root, dirs, files in os.walk(folder_path):
            dirs.sort()
            for file in sorted(files):
                full_path = os.path.join(root, file)
                arcname = os.path.relpath(full_path, start=folder_path)
                zf.write(full_path, arcname)
    return output_path


class FileAssetPublisher:
    """
    Publishes file assets to S3.

    Destination:
        bucketName: Target bucket
        objectKey: Target key
    """

    def __init__(self, client_provider):
        self.client_provider = client_provider

    def publish(self, asset: FileAsset, environment, destination: Dict[str, str]) -> None:
        bucket = destination["bucketName"]
        key = destination["objectKey"]
        s3 = self.client_provider.get_client("s3", environment)

        try:
            if self._exists(s3, bucket, key):
                logger.info(f"Asset {asset.id} already published to s3://{bucket}/{key}")
                return

            source = Path(asset.path)
            if asset.is_zip and not source.is_dir():
                raise AssetPublicationError(
                    f"the zip packaged asset path is not a directory: {source}", asset.id, environment=environment
                )
            if asset.is_zip or source.is_dir():
                with tempfile.TemporaryDirectory() as tmp:
                    archive = zip_directory(source, Path(tmp) / "asset.zip")
                    s3.upload_file(str(archive), bucket, key)
            else:
                s3.upload_file(str(source), bucket, key)
        except (ClientError, BotoCoreError, Boto3Error, OSError) as e:
            raise AssetPublicationError(str(e), asset.id, environment=environment, original_error=e)

        logger.info(f"✓ Published asset {asset.id} to s3://{bucket}/{key}")

    @staticmethod
    def _exists(s3, bucket: str, key: str) -> bool:
        try:
            s3.head_object(Bucket=bucket, Key=key)
        except ClientError as e:
            if e.response["Error"]["Code"] in ("404", "NoSuchKey", "NotFound"):
                return False
            raise
        return True


class DockerImageAssetPublisher:
    """
    Builds image assets with docker and pushes them to ECR.

    Destination:
        repositoryName: Target repository
        imageTag: Target tag

    Steps:
        1. Skip if the tag already exists in the repository
        2. docker login with the ECR authorization token
        3. docker build, docker tag, docker push
    """

    def __init__(self, client_provider, process_runner: ProcessRunner,
                 docker_executable: str = CONSTANTS.DOCKER_EXECUTABLE):
        self.client_provider = client_provider
        self.process_runner = process_runner
        self.docker = docker_executable

    def publish(self, asset: ImageAsset, environment, destination: Dict[str, str]) -> None:
        repository = destination["repositoryName"]
        tag = destination["imageTag"]
        ecr = self.client_provider.get_client("ecr", environment)

        try:
            if self._exists(ecr, repository, tag):
                logger.info(f"Image asset {asset.id} already published to {repository}:{tag}")
                return

            authorization = ecr.get_authorization_token()["authorizationData"][0]
        except (ClientError, BotoCoreError) as e:
            raise AssetPublicationError(str(e), asset.id, environment=environment, original_error=e)

        username, password = base64.b64decode(authorization["authorizationToken"]).decode("utf-8").split(":", 1)
        endpoint = authorization["proxyEndpoint"]
        registry = endpoint.split("://", 1)[-1]
        local_tag = f"cdkasset-{asset.id.lower()}"
        remote_tag = f"{registry}/{repository}:{tag}"

        self._docker(asset, environment, ["login", "--username", username, "--password-stdin", endpoint],
                     input_text=password)
        self._docker(asset, environment, self._build_args(asset, local_tag), cwd=asset.directory)
        self._docker(asset, environment, ["tag", local_tag, remote_tag])
        self._docker(asset, environment, ["push", remote_tag])

        logger.info(f"✓ Published image asset {asset.id} to {repository}:{tag}")

    @staticmethod
    def _exists(ecr, repository: str, tag: str) -> bool:
        try:
            ecr.describe_images(repositoryName=repository, imageIds=[{"imageTag": tag}])
        except ClientError as e:
            if e.response["Error"]["Code"] == "ImageNotFoundException":
                return False
            raise
        return True

    @staticmethod
    def _build_args(asset: ImageAsset, local_tag: str) -> List[str]:
        args = ["build", "--tag", local_tag]
        for name, value in asset.build_args:
            args += ["--build-arg", f"{name}={value}"]
        if asset.dockerfile:
            args += ["--file", asset.dockerfile]
        if asset.target:
            args += ["--target", asset.target]
        args.append(".")
        return args

    def _docker(self, asset: ImageAsset, environment, args: List[str], cwd=None, input_text=None) -> None:
        exit_code = self.process_runner.run([self.docker] + args, cwd=cwd, input_text=input_text)
        if exit_code != 0:
            raise AssetPublicationError(
                f"'{self.docker} {args[0]}' exited with code {exit_code}", asset.id, environment=environment
            )
