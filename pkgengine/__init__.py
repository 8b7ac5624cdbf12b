# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
pkgengine - local package management engine.

Dependency resolver plus transactional installer over catalogs of packages.
"""

__version__ = "0.1.0"
