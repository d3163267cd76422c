#!/usr/bin/env python3
"""
whisperwrap Entry Point Script

This script initializes the CLI handler and transcribes a single audio file.
"""

import sys
from whisperwrap.cli import CLIHandler

if __name__ == "__main__":
    if sys.version_info < (3, 8):
        sys.stderr.write("whisperwrap requires Python 3.8 or later.\n")
        sys.exit(1)

    cli = CLIHandler()
    cli.run()
