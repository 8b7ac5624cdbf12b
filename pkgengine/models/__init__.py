# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""Data models for pkgengine."""

from pkgengine.models.version import Version, parse_evr, vercmp
from pkgengine.models.package_models import (
    Action,
    ActionType,
    Catalog,
    CatalogConfig,
    ChangePlan,
    ChangeRequest,
    Constraint,
    InstalledPackage,
    InstallReason,
    PackageSpec,
    RecoveryRecord,
    TransactionRecord,
    TransactionState,
    TransactionStatus,
)

__all__ = [
    "Version",
    "parse_evr",
    "vercmp",
    "Action",
    "ActionType",
    "Catalog",
    "CatalogConfig",
    "ChangePlan",
    "ChangeRequest",
    "Constraint",
    "InstalledPackage",
    "InstallReason",
    "PackageSpec",
    "RecoveryRecord",
    "TransactionRecord",
    "TransactionState",
    "TransactionStatus",
]
