#!/usr/bin/env python3
"""
tell-client Setup Script
========================
Allows installation of the tell-client package.

Usage:
    pip install -e .           # Development install
    pip install -e .[test]     # Development install with test tools
    pip install .              # Regular install
"""

from setuptools import setup, find_packages

setup(
    name="tell-client",
    version="1.0.0",
    description="Client for the TellStore binary key-value protocol",
    packages=find_packages(include=["tellclient", "tellclient.*"]),
    python_requires=">=3.10",
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "tell-client=tellclient.cli:main",
        ],
    },
)
