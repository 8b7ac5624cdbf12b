# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Package Service - Modular Composition

Composes focused modules into the unified package engine.
Each module does one thing well.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from pkgengine.core.config import Config, get_config
from pkgengine.core.logging import get_logger
from pkgengine.models.package_models import (
    Catalog,
    ChangePlan,
    ChangeRequest,
    InstalledPackage,
    PackageSpec,
    TransactionRecord
)
from pkgengine.models.version import vercmp
from .collaborators import GpgVerifier, HttpFetcher, LocalFilesystem, TarExtractor
from .config import CatalogConfigLoader
from .engine import TransactionEngine
from .index import CatalogIndex
from .resolver import DependencyResolver
from .store import DatabaseStore

logger = logging.getLogger(__name__)


class PackageService:
    """
    Unified package service (modular composition).

    Composes:
    - CatalogConfigLoader: Load catalogs.conf
    - CatalogIndex: Load, refresh and query catalogs
    - TransactionEngine: Stage and commit plans
    - DatabaseStore: Installed set, locking, history, recovery
    - DependencyResolver: Requests to plans
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        filesystem=None,
        fetcher=None,
        verifier=None,
        extractor=None
    ):
        """
        Initialize package service.

        Args:
            config: Engine configuration (defaults to the global config)
            filesystem: Live filesystem collaborator (defaults to LocalFilesystem)
            fetcher: Fetch collaborator (defaults to HttpFetcher)
            verifier: Signature collaborator (defaults to GpgVerifier)
            extractor: Archive collaborator (defaults to TarExtractor)
        """
        self.config = config or get_config()
        get_logger("pkgengine", self.config.log_level, self.config.log_format)

        self.config_loader = CatalogConfigLoader(Path(self.config.catalogs_conf_path))
        self.catalog_configs = self.config_loader.load()

        self.index = CatalogIndex(self.config.sync_db_dir)
        self.index.load(self.catalog_configs)

        self.fetcher = fetcher or HttpFetcher(timeout=self.config.http_timeout)
        self.engine = TransactionEngine(
            filesystem=filesystem or LocalFilesystem(self.config.root_dir),
            fetcher=self.fetcher,
            verifier=verifier or GpgVerifier(self.config.keyring_dir),
            extractor=extractor or TarExtractor(),
            staging_workers=self.config.staging_workers,
            verify_signatures=self.config.verify_signatures,
            unsigned_catalogs=[
                name for name, catalog in self.catalog_configs.items() if not catalog.signature_required
            ]
        )

        self.store = DatabaseStore(
            Path(self.config.db_path),
            self.index,
            self.engine,
            lock_policy=self.config.lock_policy
        )
        self.resolver = DependencyResolver(self.store)

        if self.store.needs_recovery and self.config.auto_recover:
            logger.warning("Running recovery pass for interrupted transaction...")
            self.store.recover()

        logger.info(
            f"PackageService initialized with {len(self.index.catalogs())} catalogs, "
            f"{len(self.store.installed())} installed packages"
        )

    # =========================================================================
    # Transactions
    # =========================================================================

    def resolve(self, request: ChangeRequest) -> ChangePlan:
        return self.resolver.resolve(request)

    def apply(self, plan: ChangePlan, cancel_event: Optional[threading.Event] = None) -> TransactionRecord:
        return self.store.apply(plan, cancel_event=cancel_event)

    def install(self, packages: List[str], cancel_event: Optional[threading.Event] = None) -> TransactionRecord:
        """
        Install packages (optionally pinned, e.g. "foo>=1.2") with dependencies.

        Args:
            packages: Package constraints to install
            cancel_event: Set to cancel before committing starts

        Returns:
            Transaction record
        """
        plan = self.resolve(ChangeRequest(add=packages))
        return self.apply(plan, cancel_event)

    def remove(self, names: List[str], remove_unneeded: bool = False) -> TransactionRecord:
        """
        Remove packages.

        Args:
            names: Package names to remove (absent names are ignored)
            remove_unneeded: Also remove dependencies nothing requires anymore

        Returns:
            Transaction record
        """
        plan = self.resolve(ChangeRequest(remove=names, remove_unneeded=remove_unneeded))
        return self.apply(plan)

    def sysupgrade(self) -> TransactionRecord:
        """Upgrade every installed package to its newest catalog version."""
        plan = self.resolve(ChangeRequest(sysupgrade=True))
        return self.apply(plan)

    def recover(self) -> Optional[TransactionRecord]:
        return self.store.recover()

    # =========================================================================
    # Catalogs
    # =========================================================================

    def refresh(self, names: Optional[List[str]] = None) -> List[Catalog]:
        """
        Refresh catalogs from their servers.

        Args:
            names: Catalogs to refresh (defaults to every registered catalog)

        Returns:
            Refreshed catalogs
        """
        targets = names or list(self.index.configs)
        return [self.index.refresh(name, self.fetcher) for name in targets]

    def search(self, query: str) -> List[PackageSpec]:
        """Catalog entries whose name or description contains query."""
        needle = query.lower()
        return [
            package
            for catalog in self.index.catalogs()
            for package in catalog.packages
            if needle in package.name.lower() or needle in package.description.lower()
        ]

    # =========================================================================
    # Queries
    # =========================================================================

    def list_installed(self) -> List[InstalledPackage]:
        installed = self.store.installed()
        return [installed[name] for name in sorted(installed)]

    def query_package_version(self, name: str) -> Optional[str]:
        return self.store.query_package_version(name)

    def list_transactions(self, limit: int = 50) -> List[Dict[str, Any]]:
        return self.store.list_transactions(limit)

    @staticmethod
    def vercmp(a: str, b: str) -> int:
        return vercmp(a, b)
