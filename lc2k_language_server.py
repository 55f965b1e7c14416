#!/usr/bin/env python3
"""LC-2K Language Server Runner Script

This script sets up the Python path and runs the LC-2K language server.
"""

import sys
from pathlib import Path

# Add src to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root / 'src'))

from lc2k.language_server.main import main

if __name__ == '__main__':
    sys.exit(main())
