"""
Cloud assembly manifest reader.

Builds a CloudDefinition from a synthesized cloud assembly directory:

    cdk.out/
    ├── manifest.json            - artifacts, dependencies, missing context
    ├── MyStack.template.json    - stack templates
    ├── MyStack.assets.json      - asset manifests (files / dockerImages)
    └── asset.<hash>/            - asset sources

Stacks reference assets in two ways: legacy ``aws:cdk:asset`` metadata
entries, which are bound to template parameters, and ``cdk:asset-manifest``
artifacts listed among the stack's dependencies, which carry explicit
destinations.
"""

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Tuple

from cdk_deployer import constants as CONSTANTS
from cdk_deployer.core.exceptions import CloudAssemblyError
from .models import CloudDefinition, FileAsset, ImageAsset, MissingContext, StackDefinition

logger = logging.getLogger(__name__)


def _read_json(path: Path, what: str) -> Any:
    if not path.exists():
        raise CloudAssemblyError(f"The {what} '{path}' does not exist")
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise CloudAssemblyError(f"The {what} '{path}' is not valid JSON: {e}", original_error=e)


def read_manifest(cloud_assembly_directory: Path) -> Dict[str, Any]:
    """Read ``manifest.json`` from a cloud assembly directory."""
    manifest = _read_json(cloud_assembly_directory / CONSTANTS.MANIFEST_FILE_NAME, "cloud assembly manifest")
    if not isinstance(manifest, dict):
        raise CloudAssemblyError("The cloud assembly manifest must be a JSON object")
    return manifest


def read_missing_context(cloud_assembly_directory: Path) -> List[MissingContext]:
    """
    Read the context lookups the synthesized application still needs.

    Returns:
        The ``missing`` entries of the manifest, in manifest order.
    """
    manifest = read_manifest(cloud_assembly_directory)
    return _parse_missing(manifest)


def _parse_missing(manifest: Dict[str, Any]) -> List[MissingContext]:
    missing = []
    for entry in manifest.get("missing", []):
        try:
            missing.append(MissingContext(
                key=entry["key"],
                provider=entry["provider"],
                props=dict(entry.get("props", {})),
            ))
        except (KeyError, TypeError) as e:
            raise CloudAssemblyError(f"Invalid missing context entry: {entry}", original_error=e)
    return missing


# ==========================================
# Assets
# ==========================================

def _parse_legacy_assets(
    cloud_assembly_directory: Path,
    metadata: Dict[str, Any]
) -> Tuple[List[FileAsset], List[ImageAsset]]:
    """Collect ``aws:cdk:asset`` metadata entries of one stack artifact."""
    file_assets: List[FileAsset] = []
    image_assets: List[ImageAsset] = []

    for entries in metadata.values():
        for entry in entries:
            if entry.get("type") != CONSTANTS.ASSET_METADATA_TYPE:
                continue
            data = entry.get("data", {})
            packaging = data.get("packaging")

            if packaging in ("file", "zip"):
                file_assets.append(FileAsset(
                    id=data["id"],
                    path=str(cloud_assembly_directory / data["path"]),
                    packaging=packaging,
                    source_hash=data.get("sourceHash"),
                    bucket_parameter=data.get("s3BucketParameter"),
                    key_parameter=data.get("s3KeyParameter"),
                    hash_parameter=data.get("artifactHashParameter"),
                ))
            elif packaging == "container-image":
                image_assets.append(ImageAsset(
                    id=data["id"],
                    directory=str(cloud_assembly_directory / data["path"]),
                    dockerfile=data.get("file"),
                    build_args=tuple(sorted((data.get("buildArgs") or {}).items())),
                    target=data.get("target"),
                    repository_name=data.get("repositoryName"),
                    image_tag=data.get("imageTag") or data.get("sourceHash"),
                    image_name_parameter=data.get("imageNameParameter"),
                ))
            else:
                raise CloudAssemblyError(f"Unsupported asset packaging '{packaging}' for asset '{data.get('id')}'")

    return file_assets, image_assets


def _parse_asset_manifest(path: Path) -> Tuple[List[FileAsset], List[ImageAsset]]:
    """Collect the ``files`` and ``dockerImages`` of an asset manifest, one asset per destination."""
    document = _read_json(path, "asset manifest")
    directory = path.parent
    file_assets: List[FileAsset] = []
    image_assets: List[ImageAsset] = []

    for asset_id, entry in document.get("files", {}).items():
        source = entry.get("source", {})
        if "path" not in source:
            raise CloudAssemblyError(f"File asset '{asset_id}' has no source path ({path.name})")
        for destination in entry.get("destinations", {}).values():
            file_assets.append(FileAsset(
                id=asset_id,
                path=str(directory / source["path"]),
                packaging="zip" if source.get("packaging") == "zip" else "file",
                source_hash=asset_id,
                bucket_name=destination["bucketName"],
                object_key=destination["objectKey"],
            ))

    for asset_id, entry in document.get("dockerImages", {}).items():
        source = entry.get("source", {})
        if "directory" not in source:
            raise CloudAssemblyError(f"Image asset '{asset_id}' has no source directory ({path.name})")
        for destination in entry.get("destinations", {}).values():
            image_assets.append(ImageAsset(
                id=asset_id,
                directory=str(directory / source["directory"]),
                dockerfile=source.get("dockerFile"),
                build_args=tuple(sorted((source.get("dockerBuildArgs") or {}).items())),
                target=source.get("dockerBuildTarget"),
                repository_name=destination["repositoryName"],
                image_tag=destination["imageTag"],
            ))

    return file_assets, image_assets


# ==========================================
# Stacks
# ==========================================

def _parse_stack(
    cloud_assembly_directory: Path,
    artifact_id: str,
    artifact: Dict[str, Any],
    artifacts: Dict[str, Any]
) -> Tuple[StackDefinition, List[str]]:
    properties = artifact.get("properties", {})
    template_file = properties.get("templateFile")
    if not template_file:
        raise CloudAssemblyError(f"Stack artifact '{artifact_id}' has no templateFile")
    environment = artifact.get("environment")
    if not environment:
        raise CloudAssemblyError(f"Stack artifact '{artifact_id}' has no environment")

    template = _read_json(cloud_assembly_directory / template_file, "stack template")
    resources = tuple(
        logical_id for logical_id, resource in template.get("Resources", {}).items()
        if resource.get("Type") != CONSTANTS.CDK_METADATA_RESOURCE_TYPE
    )

    file_assets, image_assets = _parse_legacy_assets(cloud_assembly_directory, artifact.get("metadata", {}))

    dependencies = []
    for dependency in artifact.get("dependencies", []):
        dependency_artifact = artifacts.get(dependency, {})
        if dependency_artifact.get("type") == CONSTANTS.ASSET_MANIFEST_ARTIFACT_TYPE:
            asset_manifest = dependency_artifact.get("properties", {}).get("file")
            if not asset_manifest:
                raise CloudAssemblyError(f"Asset manifest artifact '{dependency}' has no file")
            files, images = _parse_asset_manifest(cloud_assembly_directory / asset_manifest)
            file_assets.extend(files)
            image_assets.extend(images)
        elif dependency_artifact.get("type") == CONSTANTS.STACK_ARTIFACT_TYPE:
            dependencies.append(dependency)

    required_version = properties.get("requiresBootstrapStackVersion")
    if required_version is not None and not isinstance(required_version, int):
        raise CloudAssemblyError(
            f"Stack artifact '{artifact_id}' declares a non-integer bootstrap version: {required_version!r}"
        )

    stack = StackDefinition(
        stack_name=properties.get("stackName") or artifact_id,
        environment=environment,
        template_file=template_file,
        template=template,
        resources=resources,
        parameters=tuple(template.get("Parameters", {}).keys()),
        required_toolkit_version=required_version,
        file_assets=tuple(file_assets),
        image_assets=tuple(image_assets),
        tags=tuple(sorted((properties.get("tags") or {}).items())),
    )
    return stack, dependencies


def sort_by_dependencies(stacks: List[StackDefinition]) -> List[StackDefinition]:
    """
    Order stacks so every stack comes after its dependencies.

    The sort is stable: among stacks whose dependencies are satisfied the
    declaration order is kept.

    Raises:
        CloudAssemblyError: If the dependencies form a cycle
    """
    remaining = list(stacks)
    placed: List[StackDefinition] = []
    placed_names = set()

    while remaining:
        for stack in remaining:
            if all(dependency in placed_names for dependency in stack.dependencies):
                placed.append(stack)
                placed_names.add(stack.stack_name)
                remaining.remove(stack)
                break
        else:
            names = ", ".join(stack.stack_name for stack in remaining)
            raise CloudAssemblyError(f"Stack dependencies form a cycle between: {names}")

    return placed


def load_cloud_definition(cloud_assembly_directory: Path) -> CloudDefinition:
    """
    Build the CloudDefinition of a synthesized cloud assembly.

    Args:
        cloud_assembly_directory: Directory holding manifest.json

    Returns:
        CloudDefinition with stacks in dependency order.

    Raises:
        CloudAssemblyError: If the manifest, a template or an asset manifest is
            missing or malformed, or the stack dependencies form a cycle
    """
    cloud_assembly_directory = Path(cloud_assembly_directory)
    manifest = read_manifest(cloud_assembly_directory)
    artifacts = manifest.get("artifacts", {})

    # Dependencies are kept by artifact id until every stack name is known.
    parsed = []
    for artifact_id, artifact in artifacts.items():
        if artifact.get("type") != CONSTANTS.STACK_ARTIFACT_TYPE:
            continue
        try:
            parsed.append((artifact_id, *_parse_stack(cloud_assembly_directory, artifact_id, artifact, artifacts)))
        except (KeyError, TypeError, AttributeError) as e:
            raise CloudAssemblyError(f"Malformed stack artifact '{artifact_id}': {e}", original_error=e)

    names = {artifact_id: stack.stack_name for artifact_id, stack, _ in parsed}
    stacks = [
        replace(stack, dependencies=tuple(names[d] for d in dependencies))
        for _, stack, dependencies in parsed
    ]

    definition = CloudDefinition(
        cloud_assembly_directory=cloud_assembly_directory,
        stacks=tuple(sort_by_dependencies(stacks)),
        missing=tuple(_parse_missing(manifest)),
    )
    logger.debug(f"Loaded cloud assembly with stacks: {definition.stack_names}")
    return definition
