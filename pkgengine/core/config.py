# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
pkgengine Configuration - Single source of truth.
YAML for engine settings, INI (pacman.conf style) for catalogs.

Env vars only select the config file and the log level.
"""

import configparser
import logging
import os
import yaml
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pkgengine.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/pkgengine/pkgengine.yaml"
DEFAULT_CATALOGS_CONF = "/etc/pkgengine/catalogs.conf"
DEFAULT_DB_PATH = "/var/lib/pkgengine/"

LOCK_POLICIES = ("block", "fail")


# =============================================================================
# CONFIGURATION DATACLASS
# =============================================================================

@dataclass(frozen=True)
class Config:
    """
    Immutable engine configuration.
    """

    # -- Paths --
    root_dir: str = "/"
    db_path: str = DEFAULT_DB_PATH
    catalogs_conf_path: str = DEFAULT_CATALOGS_CONF
    keyring_dir: Optional[str] = None

    # -- Transaction --
    verify_signatures: bool = True
    staging_workers: int = 4
    lock_policy: str = "block"
    auto_recover: bool = True

    # -- HTTP --
    http_timeout: float = 30.0

    # -- Logging --
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def sync_db_dir(self) -> Path:
        return Path(self.db_path) / "sync"


# =============================================================================
# LOADER
# =============================================================================

def extract_dbpath(conf_path: str, default: str = DEFAULT_DB_PATH) -> str:
    """
    Read the database path from the [options] section of an INI conf file.

    Args:
        conf_path: Path to a pacman.conf style file
        default: Value used when the file or key is missing

    Returns:
        Database path
    """
    if not Path(conf_path).exists():
        return default

    parser = configparser.ConfigParser(allow_no_value=True, strict=False)
    # Keys are case sensitive (DBPath, SigLevel)
    parser.optionxform = str
    try:
        parser.read(conf_path)
    except configparser.Error as e:
        raise ConfigurationError(f"Invalid conf file: {e}", config_file=conf_path)

    return parser.get("options", "DBPath", fallback=None) or default


def load_config(path: str = DEFAULT_CONFIG_PATH) -> Config:
    """
    Load configuration from YAML.
    Returns defaults if file doesn't exist.
    """
    if not Path(path).exists():
        logger.info(f"Config not found at {path}, using defaults")
        y = {}
    else:
        try:
            with open(path) as f:
                y = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML: {e}", config_file=path)

    # Helper to safely navigate nested dicts
    def get(d: dict, *keys, default=None):
        for k in keys:
            if not isinstance(d, dict):
                return default
            d = d.get(k, {})
        return d if d != {} and d is not None else default

    catalogs_conf = get(y, "paths", "catalogs_conf") or DEFAULT_CATALOGS_CONF

    lock_policy = get(y, "transaction", "lock_policy") or "block"
    if lock_policy not in LOCK_POLICIES:
        raise ConfigurationError(
            f"Invalid lock_policy '{lock_policy}', expected one of {LOCK_POLICIES}",
            config_file=path
        )

    try:
        staging_workers = int(get(y, "transaction", "staging_workers", default=4))
    except (TypeError, ValueError):
        raise ConfigurationError("staging_workers must be an integer", config_file=path)
    if staging_workers < 1:
        raise ConfigurationError("staging_workers must be at least 1", config_file=path)

    return Config(
        # Paths
        root_dir=get(y, "paths", "root") or "/",
        db_path=get(y, "paths", "db") or extract_dbpath(catalogs_conf),
        catalogs_conf_path=catalogs_conf,
        keyring_dir=get(y, "paths", "keyring"),

        # Transaction
        verify_signatures=get(y, "transaction", "verify_signatures", default=True),
        staging_workers=staging_workers,
        lock_policy=lock_policy,
        auto_recover=get(y, "transaction", "auto_recover", default=True),

        # HTTP
        http_timeout=float(get(y, "http", "timeout") or 30.0),

        # Logging
        log_level=os.getenv("LOG_LEVEL", get(y, "logging", "level") or "INFO"),
        log_format=get(y, "logging", "format") or "json",
    )


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create global config instance."""
    global _config
    if _config is None:
        config_path = os.getenv("PKGENGINE_CONFIG_PATH", DEFAULT_CONFIG_PATH)
        _config = load_config(config_path)
    return _config


def reload_config() -> Config:
    """Force reload configuration."""
    global _config
    _config = None
    return get_config()
