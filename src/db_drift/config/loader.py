"""TOML configuration loading and profile URL resolution."""

import logging
import os
import tomllib
from pathlib import Path
from urllib.parse import quote

from pydantic import ValidationError

from db_drift.config.models import DatabaseProfile, DriftConfig

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "DB_DRIFT_CONFIG"
DEFAULT_CONFIG_FILE = "db-drift.toml"
PASSWORD_PLACEHOLDER = "[YOUR-PASSWORD]"


def load_config(config_path: Path | str | None = None) -> DriftConfig:
    """Load db-drift configuration from a TOML file.

    Args:
        config_path: Path to the config file (default: ``$DB_DRIFT_CONFIG``,
            else ``./db-drift.toml``)

    Returns:
        DriftConfig with all profiles

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid
    """
    if config_path is None:
        config_path = os.environ.get(CONFIG_ENV_VAR) or Path.cwd() / DEFAULT_CONFIG_FILE
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"Config not found: {config_path}\n"
            f"Create {DEFAULT_CONFIG_FILE} or point {CONFIG_ENV_VAR} at your config."
        )

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    snapshot_settings = data.get("snapshot", {})

    # pydantic's ValidationError is a ValueError; re-raise with the file name
    try:
        profiles = {
            name: DatabaseProfile(**profile_data)
            for name, profile_data in data.get("profiles", {}).items()
        }
        config = DriftConfig(
            profiles=profiles,
            snapshot_format=snapshot_settings.get("format", "binary"),
        )
    except ValidationError as e:
        raise ValueError(f"Invalid config {config_path}: {e}") from e

    logger.debug("Loaded %d profiles from %s", len(config.profiles), config_path)
    return config


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Args:
        profile: Database profile from config

    Returns:
        Connection URL with password substituted
    """
    url = profile.url
    if profile.db_password and PASSWORD_PLACEHOLDER in url:
        url = url.replace(PASSWORD_PLACEHOLDER, quote(profile.db_password, safe=""))
    return url
