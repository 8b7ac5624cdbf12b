# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Packages Module - Resolver and Transaction Engine

Modular package management system:
- Each module does one thing well
- Modules compose to form complete system
- Text-based configuration throughout
"""

from .config import CatalogConfigLoader
from .index import CatalogIndex
from .resolver import DependencyResolver
from .ordering import order_actions
from .transactions import TransactionLogger, RecoveryLog
from .engine import TransactionEngine
from .store import DatabaseStore
from .service import PackageService

__all__ = [
    "CatalogConfigLoader",
    "CatalogIndex",
    "DependencyResolver",
    "order_actions",
    "TransactionLogger",
    "RecoveryLog",
    "TransactionEngine",
    "DatabaseStore",
    "PackageService",
]
