"""Cloud assembly model and manifest reader."""

from .models import (
    CloudDefinition,
    FileAsset,
    ImageAsset,
    MissingContext,
    ParameterValue,
    StackDefinition,
    TemplateRef,
)
from .manifest import load_cloud_definition, read_missing_context

__all__ = [
    "CloudDefinition",
    "FileAsset",
    "ImageAsset",
    "MissingContext",
    "ParameterValue",
    "StackDefinition",
    "TemplateRef",
    "load_cloud_definition",
    "read_missing_context",
]
