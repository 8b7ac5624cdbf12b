# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Catalog Index

Single responsibility: Hold the registered catalogs (load, refresh, query)
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from pkgengine.core.errors import NotFoundError, ValidationError
from pkgengine.models.package_models import Catalog, CatalogConfig, Constraint, PackageSpec
from .collaborators import write_atomic

logger = logging.getLogger(__name__)

PACKAGE_SUFFIX = ".pkg.tar.gz"


def _is_absolute_ref(ref: str) -> bool:
    return "://" in ref or ref.startswith("/")


class CatalogIndex:
    """
    Registered catalogs, in registration order.

    Catalog files live under sync_dir as <name>.json:

        {"name": "core", "packages": [{"name": "a", "version": "1.0-1",
          "dependencies": ["b>=1.0"], "source": "a-1.0-1.pkg.tar.gz"}]}
    """

    def __init__(self, sync_dir: Path):
        """
        Initialize catalog index.

        Args:
            sync_dir: Directory holding the synchronized catalog files
        """
        self.sync_dir = sync_dir
        self.configs: Dict[str, CatalogConfig] = {}
        self._catalogs: Dict[str, Catalog] = {}

    def load(self, configs: Dict[str, CatalogConfig]):
        """
        Register every enabled catalog from its synchronized file.

        Args:
            configs: Catalog configs in registration order
        """
        for name, config in configs.items():
            if not config.enabled:
                logger.info(f"Skipping disabled catalog: {name}")
                continue

            self.configs[name] = config
            catalog_file = self.sync_dir / f"{name}.json"
            if not catalog_file.exists():
                logger.warning(f"Catalog {name} has not been synchronized yet")
                self.register(Catalog(name=name, url=config.url))
                continue

            self.register(self.parse(name, catalog_file.read_bytes(), url=config.url))

        logger.info(f"Catalog index loaded with {len(self._catalogs)} catalogs")

    def parse(self, name: str, raw: bytes, url: Optional[str] = None) -> Catalog:
        """
        Parse catalog JSON, tagging entries with the catalog and resolving
        relative package sources against the catalog URL.

        Raises:
            ValidationError: If the catalog data is malformed
        """
        try:
            data = json.loads(raw)
            packages = []
            for entry in data.get("packages", []):
                entry = dict(entry, catalog=name)
                source = entry.get("source")
                if url and not source:
                    source = f"{entry['name']}-{entry['version']}{PACKAGE_SUFFIX}"
                if url and source and not _is_absolute_ref(source):
                    source = f"{url.rstrip('/')}/{source}"
                entry["source"] = source
                packages.append(PackageSpec(**entry))
            return Catalog(name=name, url=url, packages=packages)
        except (json.JSONDecodeError, KeyError, AttributeError, TypeError, PydanticValidationError) as e:
            raise ValidationError(f"Malformed catalog {name}: {e}", field="packages")

    def register(self, catalog: Catalog):
        """Register (or replace in place) a catalog snapshot."""
        self._catalogs[catalog.name] = catalog

    def refresh(self, name: str, fetcher) -> Catalog:
        """
        Fetch a catalog file from its URL and store it durably.

        Args:
            name: Catalog name
            fetcher: Object exposing fetch(source_ref) -> bytes

        Returns:
            The refreshed catalog
        """
        config = self.configs.get(name)
        if config is None:
            raise NotFoundError("Catalog", name)
        if not config.url:
            raise ValidationError(f"Catalog {name} has no server URL", field="url")

        logger.info(f"Refreshing catalog {name} from {config.url}...")
        raw = fetcher.fetch(f"{config.url.rstrip('/')}/{name}.json")
        catalog = self.parse(name, raw, url=config.url)

        write_atomic(self.sync_dir / f"{name}.json", raw)
        self.register(catalog)

        logger.info(f"Catalog {name} refreshed: {len(catalog.packages)} packages")
        return catalog

    def catalog(self, name: str) -> Catalog:
        """
        Get a registered catalog.

        Raises:
            NotFoundError: If the catalog is not registered
        """
        if name not in self._catalogs:
            raise NotFoundError("Catalog", name)
        return self._catalogs[name]

    def catalogs(self) -> List[Catalog]:
        return list(self._catalogs.values())

    def find(self, name: str) -> List[Tuple[int, PackageSpec]]:
        """All entries named name as (registration position, spec)."""
        return [
            (position, package)
            for position, catalog in enumerate(self._catalogs.values())
            for package in catalog.find(name)
        ]

    def providers(self, constraint: Constraint) -> List[Tuple[int, PackageSpec]]:
        """All entries satisfying constraint as (registration position, spec)."""
        return [
            (position, package)
            for position, catalog in enumerate(self._catalogs.values())
            for package in catalog.providers(constraint)
        ]
