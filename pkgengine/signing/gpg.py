# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
GPG Wrapper Module for Package Verification

Provides Python wrapper for GPG operations using python-gnupg library.
Verifies detached signatures of package archives held in memory.
"""

import os
import tempfile
import gnupg
from pathlib import Path
from typing import Tuple, Optional


class GPGNotFoundError(Exception):
    """Raised when GPG executable is not found on the system"""
    pass


def _get_gpg_instance(keyring_dir: Optional[str] = None) -> gnupg.GPG:
    """
    Get GPG instance with optional custom keyring directory.

    Args:
        keyring_dir: Optional path to custom GPG keyring directory.
                    If None, uses system default (~/.gnupg)

    Returns:
        gnupg.GPG instance

    Raises:
        GPGNotFoundError: If GPG executable is not found
    """
    try:
        if keyring_dir:
            Path(keyring_dir).mkdir(parents=True, exist_ok=True)
            gpg = gnupg.GPG(gnupghome=keyring_dir)
        else:
            gpg = gnupg.GPG()

        # Test if GPG is available
        gpg.list_keys()
        return gpg
    except (OSError, ValueError) as e:
        raise GPGNotFoundError(
            f"GPG not found or not properly configured. "
            f"Please install GPG (gpg or gnupg). Error: {str(e)}"
        )


def verify_data(
    data: bytes,
    signature: str,
    keyring_dir: Optional[str] = None
) -> Tuple[bool, str]:
    """
    Verifies a detached GPG signature against in-memory data.

    Args:
        data: Signed bytes (package archive)
        signature: ASCII-armored detached signature
        keyring_dir: Optional custom keyring directory

    Returns:
        (is_valid, error_message): Tuple of verification result and error message.
                                   error_message is empty string if valid.

    Raises:
        GPGNotFoundError: If GPG is not installed
    """
    gpg = _get_gpg_instance(keyring_dir)

    # python-gnupg reads detached signatures from a file
    fd, sig_path = tempfile.mkstemp(suffix=".sig")
    try:
        with os.fdopen(fd, "w") as sig_file:
            sig_file.write(signature)
        verified = gpg.verify_data(sig_path, data)
    finally:
        Path(sig_path).unlink(missing_ok=True)

    if verified.valid:
        return (True, "")

    error_parts = []

    if verified.status == 'signature bad':
        error_parts.append("Signature does not match package content")
    elif verified.status == 'no public key':
        error_parts.append(f"Public key not found: {verified.key_id}")
        error_parts.append("Publisher may not be trusted")
    elif verified.status:
        error_parts.append(f"Verification failed: {verified.status}")

    if verified.stderr:
        error_parts.append(f"GPG error: {verified.stderr}")

    error_message = ". ".join(error_parts) if error_parts else "Signature verification failed"
    return (False, error_message)
