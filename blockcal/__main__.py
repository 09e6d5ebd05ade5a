"""
blockcal - Main entry point.
"""

import sys

from blockcal.cli import main

if __name__ == "__main__":
    sys.exit(main())
