# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Setup configuration for pkgengine, the package resolver and transaction engine
"""

from setuptools import setup, find_packages

setup(
    name="pkgengine",
    version="0.1.0",
    description="Dependency resolver and transactional installer for package catalogs",
    author="Jason Cafarelli",
    packages=find_packages(include=["pkgengine", "pkgengine.*"]),
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.0.0",
        "PyYAML>=6.0",
        "python-gnupg>=0.5.0",
        "httpx>=0.25.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
        ]
    },
)
