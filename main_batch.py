#!/usr/bin/env python3
"""
whisperwrap Batch Processing Entry Point

Transcribes all audio files in a directory, ordered by size.
"""

import sys
from whisperwrap.batch import run_batch_processing

if __name__ == "__main__":
    if sys.version_info < (3, 8):
        sys.stderr.write("whisperwrap requires Python 3.8 or later.\n")
        sys.exit(1)

    run_batch_processing()
