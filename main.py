#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "or-analytics",
# ]
# ///
"""Main entry point for the OR analytics application."""

from or_analytics.cli import main

if __name__ == "__main__":
    main()
