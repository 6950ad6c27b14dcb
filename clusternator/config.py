"""
Configuration loading.

Values come from an optional YAML file, then ``CLUSTERNATOR_*`` environment
variables, which win on conflict.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import PreconditionError

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"
# amzn-ami-2015.03.d-amazon-ecs-optimized
DEFAULT_AMI_ID = "ami-8da458e6"
DEFAULT_INSTANCE_TYPE = "t2.small"
DEFAULT_IAM_INSTANCE_PROFILE = "ecsInstanceRole"

ENV_PREFIX = "CLUSTERNATOR_"
# only settable from the config file
MAPPING_FIELDS = ("instance_overrides", "registry_auth")


@dataclass
class Config:
    """Settings read once when an orchestrator is built."""
    region: str = DEFAULT_REGION
    profile: Optional[str] = None
    vpc_id: Optional[str] = None
    zone_id: Optional[str] = None
    ami_id: str = DEFAULT_AMI_ID
    instance_type: str = DEFAULT_INSTANCE_TYPE
    iam_instance_profile: str = DEFAULT_IAM_INSTANCE_PROFILE
    key_name: Optional[str] = None
    instance_overrides: Dict[str, Any] = field(default_factory=dict)
    registry_auth: Dict[str, str] = field(default_factory=dict)

    def require(self, *names: str) -> None:
        """Raise PreconditionError if any of ``names`` is unset."""
        missing = [name for name in names if not getattr(self, name)]
        if missing:
            env_names = ", ".join(ENV_PREFIX + name.upper() for name in missing)
            raise PreconditionError(f"Missing configuration: {env_names}")


def get_clusternator_home() -> Path:
    """
    Get the clusternator home directory.

    Returns:
        Path: clusternator home directory
    """
    home = os.environ.get("CLUSTERNATOR_HOME", ".clusternator")
    return Path(home).resolve()


def get_config_path() -> Path:
    """Path of the YAML config file, which may not exist."""
    explicit = os.environ.get("CLUSTERNATOR_CONFIG")
    if explicit:
        return Path(explicit).resolve()
    return get_clusternator_home() / "config.yaml"


def _read_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.debug(f"No config file at {path}")
        return {}

    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise PreconditionError(f"Invalid config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise PreconditionError(f"Config file {path} must contain a mapping")

    return data


def _read_env() -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for f in fields(Config):
        if f.name in MAPPING_FIELDS:
            continue
        raw = os.environ.get(ENV_PREFIX + f.name.upper())
        if raw:
            values[f.name] = raw
    return values


def load_config(path: Optional[Path] = None) -> Config:
    """
    Load configuration from the config file and environment.

    Args:
        path: Optional explicit config file path

    Returns:
        Config: Resolved configuration

    Raises:
        PreconditionError: If the file is malformed or has unknown keys
    """
    data = _read_config_file(path or get_config_path())
    data.update(_read_env())

    known = {f.name for f in fields(Config)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise PreconditionError(f"Unknown configuration keys: {', '.join(unknown)}")

    for name in MAPPING_FIELDS:
        value = data.get(name) or {}
        if not isinstance(value, dict):
            raise PreconditionError(f"{name} must be a mapping")
        data[name] = value

    return Config(**data)
