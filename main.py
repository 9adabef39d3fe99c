"""
qualityloop Main Entry Point

Run an adaptive quality monitoring session from the command line.
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from qualityloop.cli import main

if __name__ == "__main__":
    sys.exit(main())
