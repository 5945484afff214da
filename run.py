#!/usr/bin/env python3
"""Convenience runner for the Location History to KML converter.

Usage:
    python run.py Records.json [--period START END] [--preview]
"""
import logging
import sys

from location_history.main import main

if __name__ == "__main__":
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    sys.exit(main())
