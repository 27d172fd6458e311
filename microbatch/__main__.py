#!/usr/bin/env python3
"""
microbatch CLI

This module allows microbatch to be run as:
    python -m microbatch

Or installed and run as:
    microbatch
"""

from .cli import main

if __name__ == "__main__":
    main()
