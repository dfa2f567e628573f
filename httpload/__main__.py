#!/usr/bin/env python3
"""
Main entry point for running the httpload CLI as a module.

Usage:
    python3 -m httpload run http://localhost:8080/ -n 1000 -c 20
    python3 -m httpload stress http://localhost:8080/ --start 10 --max 100
    python3 -m httpload scenarios scenarios.yaml
"""

from .cli import main

if __name__ == "__main__":
    main()
