#!/usr/bin/env python3
"""LC-2K Virtual Machine Runner Script

This script sets up the Python path and runs the LC-2K virtual machine.

Usage:
    python lc2k_vm.py --file <program.as> [--max-cycles N] [--verbose]

Flags:
    --max-cycles N  Stop after N executed lines
    --verbose       Log every executed line
"""

import sys
from pathlib import Path

# Add src to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root / 'src'))

from lc2k.vm.virtual_machine import main

if __name__ == '__main__':
    sys.exit(main())
