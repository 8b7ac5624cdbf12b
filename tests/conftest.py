# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Test Fixtures and Utilities

Provides in-memory collaborators (fetch, verify, extract, filesystem) and a
harness that builds catalog indexes, database stores and engines on a
temporary database directory.
"""

import io
import json
import os
import sys
import tarfile
import tempfile
from datetime import datetime, UTC
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Add project root to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from pkgengine.core.errors import FetchError, FilesystemError
from pkgengine.models.package_models import Catalog, InstalledPackage, InstallReason, PackageSpec
from pkgengine.services.packages.collaborators import write_atomic
from pkgengine.services.packages.engine import TransactionEngine
from pkgengine.services.packages.index import CatalogIndex
from pkgengine.services.packages.store import DatabaseStore, dump_installed


# ============================================================================
# Fake Collaborators
# ============================================================================

class MemoryFetcher:
    """Serves package archives from a dict; unknown sources raise FetchError"""

    def __init__(self):
        self.sources: Dict[str, bytes] = {}
        self.fetched: List[str] = []

    def fetch(self, source_ref: str) -> bytes:
        self.fetched.append(source_ref)
        if source_ref not in self.sources:
            raise FetchError(source_ref, "no such package")
        return self.sources[source_ref]


class JsonExtractor:
    """Archives are JSON objects mapping relative path -> text content"""

    def extract(self, data: bytes):
        return [(path, content.encode("utf-8")) for path, content in json.loads(data).items()]


class StaticVerifier:
    """Accepts or rejects every signature"""

    def __init__(self, valid: bool = True):
        self.valid = valid
        self.calls = 0

    def verify(self, data: bytes, signature: str) -> bool:
        self.calls += 1
        return self.valid


class MemoryFilesystem:
    """Live filesystem held in a dict; paths in fail_paths fail to write"""

    def __init__(self):
        self.files: Dict[str, bytes] = {}
        self.fail_paths = set()
        self.deleted: List[str] = []

    def write(self, path: str, content: bytes):
        if path in self.fail_paths:
            raise FilesystemError(path, "disk full")
        self.files[path] = content

    def delete(self, path: str):
        self.deleted.append(path)
        self.files.pop(path, None)

    def exists(self, path: str) -> bool:
        return path in self.files


# ============================================================================
# Helpers
# ============================================================================

def make_tarball(files: Dict[str, bytes]) -> bytes:
    """Build a gzip tar archive in memory from path -> content."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for path, content in files.items():
            info = tarfile.TarInfo(name=path)
            info.size = len(content)
            archive.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


class Harness:
    """
    Builds stores over a temporary database directory with fake collaborators.

    Usage:
        harness.publish("core", "a", "1.0", dependencies=["b"])
        store = harness.store(installed=[harness.installed("b", "1.0")])
    """

    def __init__(self, root: Path):
        self.root = root
        self.db_path = root / "db"
        self.filesystem = MemoryFilesystem()
        self.fetcher = MemoryFetcher()
        self.extractor = JsonExtractor()
        self.verifier = StaticVerifier(True)
        self.catalogs: Dict[str, List[PackageSpec]] = {}

    def spec(self, catalog: str, name: str, version: str, files: Optional[Dict[str, str]] = None, **fields) -> PackageSpec:
        source = f"mem://{catalog}/{name}-{version}"
        self.fetcher.sources[source] = json.dumps(files or default_files(name, version)).encode("utf-8")
        return PackageSpec(name=name, version=version, source=source, catalog=catalog, **fields)

    def publish(self, catalog: str, name: str, version: str, files: Optional[Dict[str, str]] = None, **fields) -> PackageSpec:
        """Add a package to a catalog and make its archive fetchable."""
        spec = self.spec(catalog, name, version, files, **fields)
        self.catalogs.setdefault(catalog, []).append(spec)
        return spec

    def installed(
        self,
        name: str,
        version: str,
        files: Optional[Dict[str, str]] = None,
        reason: InstallReason = InstallReason.EXPLICIT,
        **fields
    ) -> InstalledPackage:
        """Build an installed package and put its files on the live filesystem."""
        files = files or default_files(name, version)
        for path, content in files.items():
            self.filesystem.files[path] = content.encode("utf-8")
        spec = PackageSpec(name=name, version=version, catalog="local", **fields)
        return InstalledPackage(
            spec=spec,
            files=tuple(files),
            installed_at=datetime(2025, 1, 1, tzinfo=UTC),
            reason=reason
        )

    def index(self) -> CatalogIndex:
        index = CatalogIndex(self.db_path / "sync")
        for name, packages in self.catalogs.items():
            index.register(Catalog(name=name, packages=packages))
        return index

    def engine(self, **kwargs) -> TransactionEngine:
        options = {"staging_workers": 2, "verify_signatures": False}
        options.update(kwargs)
        return TransactionEngine(self.filesystem, self.fetcher, self.verifier, self.extractor, **options)

    def store(
        self,
        installed: Optional[List[InstalledPackage]] = None,
        lock_policy: str = "block",
        **engine_kwargs
    ) -> DatabaseStore:
        if installed is not None:
            write_atomic(
                self.db_path / "local" / "installed.json",
                dump_installed({pkg.name: pkg for pkg in installed})
            )
        return DatabaseStore(self.db_path, self.index(), self.engine(**engine_kwargs), lock_policy=lock_policy)


def default_files(name: str, version: str) -> Dict[str, str]:
    return {
        f"usr/bin/{name}": f"#!/bin/sh\necho {name} {version}\n",
        f"usr/share/{name}/VERSION": version,
    }


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def temp_dir():
    """Temporary directory removed after the test"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def harness(temp_dir):
    """Harness over a temporary database directory"""
    return Harness(temp_dir)
