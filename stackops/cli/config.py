"""CLI configuration.

Sources, lowest precedence first: YAML file, environment variables, CLI flags.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from ..errors import InvalidInput

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "STACKOPS_CONFIG"
DEFAULT_CONFIG_PATH = Path.home() / ".stackops" / "config.yaml"


@dataclass
class Config:
    """Settings shared by all commands.

    Attributes:
        aws_profile: AWS profile name (optional)
        region: AWS region (optional)
        log_level: Log level name
        audit_dir: Directory for teardown audit logs (default: ~/.stackops/audit-logs)
        min_supported_sortable_tag: Oldest version the update engine accepts
        release_fetch_retries: Release metadata fetch attempts
        release_fetch_min_wait: First release fetch backoff, in seconds
        release_fetch_max_wait: Release fetch backoff cap, in seconds
        assume_yes: Answer yes to confirmation prompts (set by --yes)
    """

    aws_profile: Optional[str] = None
    region: Optional[str] = None
    log_level: str = "INFO"
    audit_dir: Optional[str] = None
    min_supported_sortable_tag: str = "01.13.0a"
    release_fetch_retries: int = 10
    release_fetch_min_wait: float = 5.0
    release_fetch_max_wait: float = 10.0
    assume_yes: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")
        return cls(**{key: value for key, value in data.items() if key in known})

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load configuration from YAML and the environment.

        Args:
            path: Config file (default: $STACKOPS_CONFIG or ~/.stackops/config.yaml)

        Raises:
            InvalidInput: If the file is not a YAML mapping
        """
        config_path = Path(path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)

        data: dict[str, Any] = {}
        if config_path.exists():
            with open(config_path, "r") as f:
                loaded = yaml.safe_load(f)
            if loaded is not None and not isinstance(loaded, dict):
                raise InvalidInput(f"expected a mapping in config file: {config_path}")
            data = loaded or {}
            logger.debug(f"Loaded config from {config_path}")

        config = cls.from_dict(data)
        config.apply_env(os.environ)
        return config

    def apply_env(self, env: Any) -> None:
        profile = env.get("STACKOPS_PROFILE") or env.get("AWS_PROFILE")
        if profile:
            self.aws_profile = profile

        region = env.get("STACKOPS_REGION") or env.get("AWS_REGION")
        if region:
            self.region = region

        log_level = env.get("STACKOPS_LOG_LEVEL")
        if log_level:
            self.log_level = log_level.upper()
