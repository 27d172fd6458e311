#!/usr/bin/env python3
"""
Setup script for microbatch - discretized-stream micro-batch processing.
"""

from pathlib import Path
from setuptools import setup, find_packages

# Read README for long description
this_directory = Path(__file__).parent
readme_path = this_directory / "README.md"
long_description = ""
if readme_path.exists():
    long_description = readme_path.read_text()

setup(
    name="microbatch",
    version="0.1.0",
    description="Discretized-stream micro-batch processing on asyncio",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="Apache-2.0",

    packages=find_packages(exclude=["tests*", "examples*", "docs*"]),
    include_package_data=True,

    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: System :: Distributed Computing",
    ],

    python_requires=">=3.10",

    install_requires=[
        "rich>=12.0.0",
        "typer>=0.7.0",
        "prometheus-client>=0.19.0",
    ],

    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "black>=23.0.0",
            "isort>=5.12.0",
            "flake8>=6.0.0",
        ],
    },

    # Entry points for command-line scripts
    entry_points={
        "console_scripts": [
            "microbatch = microbatch.cli:main",
        ],
    },

    zip_safe=False,
)
