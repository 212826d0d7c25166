#!/usr/bin/env python3
"""
Tectonic Client Setup Script
============================
Allows installation of the tectonic-client package.

Usage:
    pip install -e .           # Development install
    pip install -e ".[test]"   # With the test tooling
    pip install .              # Regular install
"""

from setuptools import setup, find_packages

setup(
    name="tectonic-client",
    version="1.0.0",
    packages=find_packages(include=["tectonic", "tectonic.*"]),
    python_requires=">=3.10",
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "tectonic-cli=tectonic.cli:main",
        ],
    },
)
