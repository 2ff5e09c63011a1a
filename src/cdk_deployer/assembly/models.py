"""
Cloud definition data model.

Immutable value types describing what a run manages: stacks, their
templates and assets, and the values passed to CloudFormation.

Classes:
    TemplateRef: A template passed either by URL or inline body
    ParameterValue: A literal parameter value or "keep the deployed value"
    FileAsset / ImageAsset: Out-of-band artifacts referenced by templates
    StackDefinition: One stack of the cloud assembly
    CloudDefinition: All stacks of a run, in dependency order
    MissingContext: A context lookup requested by the synthesized application
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from cdk_deployer import constants as CONSTANTS


@dataclass(frozen=True)
class TemplateRef:
    """
    A reference to a template: exactly one of ``url`` or ``body`` is set.

    Example:
        >>> TemplateRef.from_body('{"Resources": {}}').to_request()
        {"TemplateBody": '{"Resources": {}}'}
    """

    url: Optional[str] = None
    body: Optional[str] = None

    def __post_init__(self):
        if (self.url is None) == (self.body is None):
            raise ValueError("A template reference requires exactly one of url or body")

    @classmethod
    def from_url(cls, url: str) -> 'TemplateRef':
        return cls(url=url)

    @classmethod
    def from_body(cls, body: str) -> 'TemplateRef':
        return cls(body=body)

    def to_request(self) -> Dict[str, str]:
        """CloudFormation request arguments for this template."""
        if self.url is not None:
            return {"TemplateURL": self.url}
        return {"TemplateBody": self.body}

    def __repr__(self) -> str:
        return f"TemplateRef(url={self.url!r})" if self.url is not None else "TemplateRef(body=...)"


@dataclass(frozen=True)
class ParameterValue:
    """
    A stack parameter value.

    Either a literal (``ParameterValue.literal("x")``) or ``Unchanged``
    (``ParameterValue.unchanged()``), which keeps the value currently held by
    the deployed stack.
    """

    value: Optional[str] = None
    use_previous: bool = False

    def __post_init__(self):
        if self.use_previous and self.value is not None:
            raise ValueError("An unchanged parameter cannot carry a value")
        if not self.use_previous and self.value is None:
            raise ValueError("A literal parameter requires a value")

    @classmethod
    def literal(cls, value: str) -> 'ParameterValue':
        return cls(value=value)

    @classmethod
    def unchanged(cls) -> 'ParameterValue':
        return cls(use_previous=True)

    @property
    def is_unchanged(self) -> bool:
        return self.use_previous

    def to_request(self, key: str) -> Dict[str, Any]:
        if self.use_previous:
            return {"ParameterKey": key, "UsePreviousValue": True}
        return {"ParameterKey": key, "ParameterValue": self.value}


@dataclass(frozen=True)
class FileAsset:
    """
    A file or directory published to S3.

    Asset-manifest assets carry explicit destinations (which may contain
    ${AWS::...} variables); legacy metadata assets carry parameter names and
    are published to the toolkit bucket.
    """

    id: str
    path: str
    packaging: str = "file"
    source_hash: Optional[str] = None
    bucket_name: Optional[str] = None
    object_key: Optional[str] = None
    bucket_parameter: Optional[str] = None
    key_parameter: Optional[str] = None
    hash_parameter: Optional[str] = None

    @property
    def is_zip(self) -> bool:
        return self.packaging == "zip"

    @property
    def file_name(self) -> str:
        """Object name for legacy assets: ``<hash><ext>``."""
        extension = ".zip" if self.is_zip else Path(self.path).suffix
        return f"{self.source_hash or self.id}{extension}"

    @property
    def legacy_prefix(self) -> str:
        return f"{CONSTANTS.ASSET_KEY_PREFIX}{self.id}/"


@dataclass(frozen=True)
class ImageAsset:
    """A container image built from a directory and pushed to ECR."""

    id: str
    directory: str
    dockerfile: Optional[str] = None
    build_args: Tuple[Tuple[str, str], ...] = ()
    target: Optional[str] = None
    repository_name: Optional[str] = None
    image_tag: Optional[str] = None
    image_name_parameter: Optional[str] = None


@dataclass(frozen=True)
class MissingContext:
    """A context value the application needs: provider kind, key and query."""

    key: str
    provider: str
    props: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class StackDefinition:
    """
    One stack of the cloud assembly.

    Attributes:
        stack_name: CloudFormation stack name
        environment: Symbolic environment (aws://account/region)
        template_file: Template path relative to the cloud assembly directory
        template: Parsed template body
        resources: Logical ids of declared resources (AWS::CDK::Metadata excluded)
        parameters: Parameter names declared by the template
        required_toolkit_version: Minimum toolkit stack version, if declared
        dependencies: Names of the stacks this stack depends on
        file_assets / image_assets: Assets referenced by the template
        tags: Stack tags declared by the application
    """

    stack_name: str
    environment: str
    template_file: str
    template: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    resources: Tuple[str, ...] = ()
    parameters: Tuple[str, ...] = ()
    required_toolkit_version: Optional[int] = None
    dependencies: Tuple[str, ...] = ()
    file_assets: Tuple[FileAsset, ...] = ()
    image_assets: Tuple[ImageAsset, ...] = ()
    tags: Tuple[Tuple[str, str], ...] = ()


@dataclass(frozen=True)
class CloudDefinition:
    """
    Every stack of one run, in dependency order, plus the deduplicated assets.

    Built once per invocation by ``load_cloud_definition`` and read-only after.
    """

    cloud_assembly_directory: Path
    stacks: Tuple[StackDefinition, ...] = ()
    missing: Tuple[MissingContext, ...] = ()

    @property
    def file_assets(self) -> List[FileAsset]:
        return _unique(asset for stack in self.stacks for asset in stack.file_assets)

    @property
    def image_assets(self) -> List[ImageAsset]:
        return _unique(asset for stack in self.stacks for asset in stack.image_assets)

    @property
    def stack_names(self) -> List[str]:
        return [stack.stack_name for stack in self.stacks]

    def get_stack(self, stack_name: str) -> Optional[StackDefinition]:
        for stack in self.stacks:
            if stack.stack_name == stack_name:
                return stack
        return None


def _unique(items) -> list:
    seen = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen
