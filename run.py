#!/usr/bin/env python3
"""Convenience runner for the route map tool.

Usage:
    python run.py tracks.json --output maps/routes.html
"""
import logging
import sys

from route_matcher.tools.render_map import main

if __name__ == "__main__":
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    sys.exit(main(sys.argv[1:]))
