#!/usr/bin/env python3
"""
Budget Sync - Main Entry Point

This script serves as the main entry point for the budget sync. It runs the
API server or drives a sync run against a running server.
"""
import sys
from cli.main import main

if __name__ == "__main__":
    sys.exit(main())
