# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Catalog Configuration Loader

Single responsibility: Load catalog configurations from catalogs.conf
"""

import configparser
import logging
from pathlib import Path
from typing import Dict

from pkgengine.core.errors import ConfigurationError
from pkgengine.models.package_models import CatalogConfig

logger = logging.getLogger(__name__)

OPTIONS_SECTION = "options"


class CatalogConfigLoader:
    """
    Loads catalog configurations from an INI-style catalogs.conf.

    Each section except [options] registers one catalog; section order is
    the registration order used to break version ties:

        [options]
        DBPath = /var/lib/pkgengine/

        [core]
        Server = https://mirror.example.org/core
        SigLevel = Required
    """

    def __init__(self, config_path: Path):
        """
        Initialize configuration loader.

        Args:
            config_path: Path to catalogs.conf file
        """
        self.config_path = config_path

    def load(self) -> Dict[str, CatalogConfig]:
        """
        Load catalog configurations from catalogs.conf

        Returns:
            Dictionary of catalog configs keyed by name, in registration order
        """
        catalogs = {}

        if not self.config_path.exists():
            logger.warning(f"No catalogs.conf found at {self.config_path}")
            return catalogs

        config = configparser.ConfigParser(allow_no_value=True, strict=False)
        config.optionxform = str
        try:
            config.read(self.config_path)
        except configparser.Error as e:
            raise ConfigurationError(f"Invalid catalogs.conf: {e}", config_file=str(self.config_path))

        for section in config.sections():
            if section == OPTIONS_SECTION:
                continue

            url = config.get(section, "Server", fallback=None) or config.get(section, "url", fallback=None)
            sig_level = config.get(section, "SigLevel", fallback="Required") or "Required"

            try:
                enabled = config.getboolean(section, "enabled", fallback=True)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid 'enabled' value for catalog {section}: {e}",
                    config_file=str(self.config_path)
                )

            catalogs[section] = CatalogConfig(
                name=section,
                url=url,
                enabled=enabled,
                signature_required=sig_level.split()[0].lower() != "never"
            )
            logger.info(f"Loaded catalog: {section} ({url})")

        return catalogs
