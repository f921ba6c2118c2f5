"""
immich-stacker
==============

Main entry point when running from a source checkout:

    python main.py --endpoint https://photos.example.com --match '_\\d+(?=\\.)' --parent '^[^_]+\\.'

Installed copies provide the same command as `immich-stacker`.
"""

import os
import sys

# Allow 'import immich_stacker' regardless of where the script is executed from
current_dir = os.path.dirname(os.path.abspath(__file__))
if current_dir not in sys.path:
    sys.path.insert(0, current_dir)

from immich_stacker.cli import main

if __name__ == "__main__":
    sys.exit(main())
