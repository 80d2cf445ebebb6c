"""Main module for feeder.

This module allows the CLI to be run as a Python module using:
python -m feeder
"""

import sys

from feeder.cli.app import main

if __name__ == "__main__":
    sys.exit(main())
