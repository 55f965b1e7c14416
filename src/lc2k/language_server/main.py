"""LC-2K Language Server Main Entry Point

Command-line interface for the LC-2K language server.
"""

import argparse
import logging
import sys

from .server import lc2k_server


def main() -> int:
    """Main entry point for the language server."""
    parser = argparse.ArgumentParser(
        description="LC-2K Language Server - Provides LSP support for LC-2K assembly",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  lc2k-server                             # Start language server on stdio
  lc2k-server --tcp                       # Start language server on TCP
  lc2k-server --tcp --port 2087           # Start on specific TCP port
"""
    )

    parser.add_argument(
        "--tcp",
        action="store_true",
        help="Use TCP transport instead of stdio"
    )

    parser.add_argument(
        "--port",
        type=int,
        default=2087,
        help="Port number for TCP (default: 2087)"
    )

    parser.add_argument(
        "--host",
        default="localhost",
        help="Host address for TCP (default: localhost)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="LC-2K Language Server v0.1.0"
    )

    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, stream=sys.stderr)

    try:
        if args.tcp:
            print(f"Starting LC-2K Language Server on TCP {args.host}:{args.port}")
            lc2k_server.start_tcp(args.host, args.port)
        else:
            print("Starting LC-2K Language Server on stdio", file=sys.stderr)
            lc2k_server.start_io()

        return 0

    except KeyboardInterrupt:
        print("\nServer interrupted by user", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
