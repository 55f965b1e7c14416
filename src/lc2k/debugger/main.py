"""LC-2K Debugger Main Entry Point

Command-line interface for the LC-2K debugger.
"""

import argparse
import logging
import sys
from pathlib import Path

from .debug_adapter import start_debug_adapter
from .interactive_debugger import start_interactive_debugger


def main() -> int:
    """Main entry point for the debugger."""
    parser = argparse.ArgumentParser(
        description="LC-2K Debugger - Debug LC-2K assembly programs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  lc2k-debug program.as                    # Start interactive debugger
  lc2k-debug --adapter                     # Start debug adapter for VSCode
  lc2k-debug --stop-on-entry program.as    # Load and stop on the first statement
"""
    )

    parser.add_argument(
        "program",
        nargs="?",
        type=Path,
        help="Assembly program to debug"
    )

    parser.add_argument(
        "--adapter",
        action="store_true",
        help="Start debug adapter for VSCode integration"
    )

    parser.add_argument(
        "--interactive", "-i",
        action="store_true",
        help="Start interactive debugger (default)"
    )

    parser.add_argument(
        "--stop-on-entry",
        action="store_true",
        help="Stop on the first statement after loading"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="LC-2K Debugger v0.1.0"
    )

    args = parser.parse_args()

    if args.verbose:
        # stdout carries the adapter protocol, so logs go to stderr
        logging.basicConfig(level=logging.DEBUG, stream=sys.stderr)

    try:
        if args.adapter:
            start_debug_adapter()
        else:
            program_file = str(args.program) if args.program else None
            start_interactive_debugger(program_file, args.stop_on_entry)

        return 0

    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == "__main__":
    sys.exit(main())
