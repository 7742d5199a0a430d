#!/usr/bin/env python3
"""
Setup script for Tally.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text() if readme_file.exists() else ""

# Read requirements
requirements_file = Path(__file__).parent / "requirements.txt"
requirements = []
if requirements_file.exists():
    requirements = [
        line.strip()
        for line in requirements_file.read_text().splitlines()
        if line.strip() and not line.startswith("#")
    ]

setup(
    name="tally",
    version="0.1.0",
    description="Async two-tier query cache, event bus and transactional writes for SQLite-backed apps",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Tally Contributors",
    packages=find_packages(include=["tally", "tally.*"]),
    include_package_data=True,
    python_requires=">=3.10",
    install_requires=requirements or [
        "aiosqlite>=0.19.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "redis": [
            "redis>=5.0.1",
        ],
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
            "redis>=5.0.1",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Database",
        "Topic :: Software Development :: Libraries",
    ],
    keywords="cache sqlite asyncio events transactions",
)
