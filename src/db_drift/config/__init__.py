"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from db_drift.config import load_config, resolve_url, DatabaseProfile, DriftConfig
"""

from db_drift.config.loader import load_config, resolve_url
from db_drift.config.models import DatabaseProfile, DriftConfig

__all__ = ["load_config", "resolve_url", "DriftConfig", "DatabaseProfile"]
