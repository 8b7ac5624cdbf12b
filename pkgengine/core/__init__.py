# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Core utilities and shared modules for pkgengine.

This package contains:
- config: Configuration management
- errors: Custom exceptions
- logging: Structured logging
"""

from pkgengine.core.config import get_config, load_config, Config
from pkgengine.core.errors import PkgEngineError, NotFoundError, ValidationError
from pkgengine.core.logging import get_logger, log_event

__all__ = [
    "get_config",
    "load_config",
    "Config",
    "PkgEngineError",
    "NotFoundError",
    "ValidationError",
    "get_logger",
    "log_event",
]
