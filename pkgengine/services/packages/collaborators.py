# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Default External Collaborators

Single responsibility: Provide the fetch / verify / extract / filesystem
capabilities the transaction engine calls.

Any object exposing the same methods can be injected instead:
- fetch(source_ref) -> bytes
- verify(data, signature) -> bool
- extract(data) -> [(relative_path, content)]
- write(path, content), delete(path), exists(path)
"""

import io
import logging
import os
import tarfile
import tempfile
from pathlib import Path, PurePosixPath
from typing import List, Optional, Tuple

import httpx

from pkgengine.core.errors import ExtractError, FetchError, FilesystemError, VerificationError
from pkgengine.signing import gpg

logger = logging.getLogger(__name__)


def write_atomic(path: Path, data: bytes):
    """
    Durably replace a file: write temp file, fsync, rename over the old one.

    The temp file gets a unique name in the destination directory so it
    never clobbers an existing sibling.

    Args:
        path: Destination file
        data: New content
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = tempfile.NamedTemporaryFile(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
    )
    temp_path = Path(temp_file.name)
    try:
        with temp_file as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except Exception:
        temp_path.unlink(missing_ok=True)
        raise


def normalize_relpath(path: str) -> str:
    """
    Normalize an archive or manifest path to a safe relative POSIX path.

    Raises:
        ValueError: If the path is absolute, empty or escapes the root
    """
    pure = PurePosixPath(path)
    if pure.is_absolute():
        raise ValueError(f"Absolute path not allowed: {path}")
    parts = [part for part in pure.parts if part not in ("", ".")]
    if not parts or ".." in parts:
        raise ValueError(f"Unsafe path: {path}")
    return "/".join(parts)


class HttpFetcher:
    """Fetches package archives and catalog files"""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    def fetch(self, source_ref: str) -> bytes:
        """
        Fetch bytes from an http(s) URL, a file:// URL or a local path.

        Raises:
            FetchError: If the source cannot be read
        """
        if source_ref.startswith(("http://", "https://")):
            try:
                with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
                    response = client.get(source_ref)
                    response.raise_for_status()
                    return response.content
            except httpx.HTTPError as e:
                raise FetchError(source_ref, str(e))

        local_path = source_ref[len("file://"):] if source_ref.startswith("file://") else source_ref
        try:
            return Path(local_path).read_bytes()
        except OSError as e:
            raise FetchError(source_ref, str(e))


class GpgVerifier:
    """Checks detached signatures with the configured keyring"""

    def __init__(self, keyring_dir: Optional[str] = None):
        self.keyring_dir = keyring_dir

    def verify(self, data: bytes, signature: str) -> bool:
        try:
            is_valid, error_message = gpg.verify_data(data, signature, keyring_dir=self.keyring_dir)
        except gpg.GPGNotFoundError as e:
            raise VerificationError(str(e))

        if not is_valid:
            logger.warning(f"Signature verification failed: {error_message}")
        return is_valid


class TarExtractor:
    """Extracts regular files from tar package archives"""

    def extract(self, data: bytes) -> List[Tuple[str, bytes]]:
        """
        Read every regular file of the archive in archive order.

        Top-level metadata entries (".PKGINFO", ".MTREE", ...) are skipped.

        Raises:
            ExtractError: If the archive is corrupt or contains unsafe paths
        """
        entries = []
        try:
            with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as archive:
                for member in archive.getmembers():
                    if not member.isfile():
                        continue
                    try:
                        path = normalize_relpath(member.name)
                    except ValueError as e:
                        raise ExtractError(str(e))
                    if "/" not in path and path.startswith("."):
                        continue
                    extracted = archive.extractfile(member)
                    entries.append((path, extracted.read()))
        except tarfile.TarError as e:
            raise ExtractError(f"Invalid package archive: {e}")
        return entries


class LocalFilesystem:
    """Live filesystem rooted at root_dir; every path is relative to it"""

    def __init__(self, root_dir: str = "/"):
        self.root = Path(root_dir)

    def _resolve(self, path: str) -> Path:
        try:
            return self.root / normalize_relpath(path)
        except ValueError as e:
            raise FilesystemError(path, str(e))

    def write(self, path: str, content: bytes):
        target = self._resolve(path)
        try:
            write_atomic(target, content)
        except OSError as e:
            raise FilesystemError(path, str(e))

    def delete(self, path: str):
        target = self._resolve(path)
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            raise FilesystemError(path, str(e))

        # Prune directories left empty, never the root itself
        parent = target.parent
        while parent != self.root and self.root in parent.parents:
            try:
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()
