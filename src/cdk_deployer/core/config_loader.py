"""
Configuration loading utilities.

This module loads the deployer configuration and the persisted context file.

File Loading Order:
    1. cdk-deployer.json - Optional deployer settings (camelCase or snake_case keys)
    2. Environment fallbacks - AWS_PROFILE, AWS_ENDPOINT_URL, CDK_NEW_BOOTSTRAP
       (used only for settings the file leaves unset)

Usage:
    from cdk_deployer.core.config_loader import load_deployer_config, load_context

    config = load_deployer_config(Path("/work/my-app"))
    context = load_context(config.context_file)
"""

import json
import os
import re
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from cdk_deployer import constants as CONSTANTS
from .context import DeployerConfig
from .exceptions import ConfigurationError

_PATH_FIELDS = {"cloud_assembly_directory", "context_file"}
_STR_FIELDS = {"toolkit_stack_name", "profile", "endpoint_url", "mode"}
_INT_FIELDS = {"default_bootstrap_version", "max_context_rounds"}
_FLOAT_FIELDS = {"poll_initial_delay", "poll_max_delay"}
_LIST_FIELDS = {"stacks", "notification_arns"}
_MAP_FIELDS = {"parameters", "tags", "bootstrap_parameters", "bootstrap_tags"}


def _load_json_file(file_path: Path, required: bool = True) -> Any:
    """
    Load a JSON file.

    Args:
        file_path: Path to the JSON file
        required: If True, raise error when file is missing. If False, return empty dict.

    Raises:
        ConfigurationError: If file is missing (when required) or has invalid JSON
    """
    if not file_path.exists():
        if required:
            raise ConfigurationError(
                f"Required configuration file not found: {file_path.name}",
                config_file=str(file_path)
            )
        return {}

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"Invalid JSON in configuration file: {e}",
            config_file=str(file_path)
        )


def _to_snake_case(key: str) -> str:
    """toolkitStackName -> toolkit_stack_name"""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def get_default_bootstrap_version(environ: Optional[Mapping[str, str]] = None) -> int:
    """
    Derive the default toolkit version from the CDK_NEW_BOOTSTRAP flag.

    Returns:
        1 if the flag is set and non-empty, otherwise 0.
    """
    environ = os.environ if environ is None else environ
    return 1 if environ.get(CONSTANTS.NEW_BOOTSTRAP_VARIABLE_NAME) else 0


def _coerce(name: str, value: Any, config_file: str) -> Any:
    """Validate and convert a single config value to its field type."""
    def fail(expected: str):
        raise ConfigurationError(
            f"Field '{name}' must be {expected}, got {type(value).__name__}",
            config_file=config_file
        )

    if name in _PATH_FIELDS:
        if not isinstance(value, str):
            fail("a string path")
        return Path(value)
    if name in _STR_FIELDS:
        if value is not None and not isinstance(value, str):
            fail("a string")
        return value
    if name in _INT_FIELDS:
        if isinstance(value, bool) or not isinstance(value, int):
            fail("an integer")
        return value
    if name in _FLOAT_FIELDS:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            fail("a number")
        return float(value)
    if name in _LIST_FIELDS:
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            fail("a list of strings")
        return list(value)
    if name in _MAP_FIELDS:
        if not isinstance(value, dict):
            fail("an object")
        return {str(k): str(v) for k, v in value.items() if v is not None}
    return value


def load_deployer_config(
    project_path: Path,
    config_file: str = CONSTANTS.DEPLOYER_CONFIG_FILE_NAME,
    environ: Optional[Mapping[str, str]] = None
) -> DeployerConfig:
    """
    Load the deployer configuration for a project.

    Relative paths in the file (cloudAssemblyDirectory, contextFile) are
    resolved against ``project_path``.

    Args:
        project_path: Directory of the cloud application
        config_file: Name of the optional JSON config file in project_path
        environ: Environment used for fallbacks (defaults to os.environ)

    Returns:
        DeployerConfig with all loaded settings

    Raises:
        ConfigurationError: If the file has invalid JSON, unknown keys or wrong types

    Example:
        config = load_deployer_config(Path("/work/my-app"))
        print(config.toolkit_stack_name)  # "CDKToolkit"
    """
    environ = os.environ if environ is None else environ
    file_path = project_path / config_file
    raw = _load_json_file(file_path, required=False)

    if not isinstance(raw, dict):
        raise ConfigurationError("Configuration must be a JSON object", config_file=str(file_path))

    known = {f.name for f in fields(DeployerConfig)}
    values: Dict[str, Any] = {}
    for key, value in raw.items():
        name = _to_snake_case(key)
        if name not in known:
            raise ConfigurationError(f"Unknown configuration field '{key}'", config_file=str(file_path))
        values[name] = _coerce(name, value, str(file_path))

    # Environment fallbacks
    if not values.get("profile") and environ.get("AWS_PROFILE"):
        values["profile"] = environ["AWS_PROFILE"]
    if not values.get("endpoint_url") and environ.get("AWS_ENDPOINT_URL"):
        values["endpoint_url"] = environ["AWS_ENDPOINT_URL"]
    if "default_bootstrap_version" not in values:
        values["default_bootstrap_version"] = get_default_bootstrap_version(environ)

    for name in _PATH_FIELDS:
        path = values.get(name)
        if path is not None and not path.is_absolute():
            values[name] = project_path / path
    values.setdefault("cloud_assembly_directory", project_path / CONSTANTS.CLOUD_ASSEMBLY_DIR_NAME)
    values.setdefault("context_file", project_path / CONSTANTS.CONTEXT_FILE_NAME)

    config = DeployerConfig(**values)

    if config.max_context_rounds < 1:
        raise ConfigurationError("Field 'max_context_rounds' must be at least 1", config_file=str(file_path))

    return config


def load_context(context_file: Path) -> Dict[str, Any]:
    """
    Read the persisted context map.

    Returns:
        The stored context, or an empty dict when the file does not exist.

    Raises:
        ConfigurationError: If the file is not a JSON object
    """
    context = _load_json_file(context_file, required=False)
    if not isinstance(context, dict):
        raise ConfigurationError("Context file must contain a JSON object", config_file=str(context_file))
    return context


def save_context(context_file: Path, context: Dict[str, Any]) -> None:
    """Write the context map as pretty-printed JSON with sorted keys."""
    context_file.parent.mkdir(parents=True, exist_ok=True)
    with open(context_file, "w", encoding="utf-8") as f:
        json.dump(context, f, indent=2, sort_keys=True)
        f.write("\n")
