"""CLI entry point for activerun.

Usage:
    python -m activerun tools
    python -m activerun run "list files in /tmp" --decider mypkg.agent:decide
    python -m activerun serve --decider mypkg.agent:decide
"""

import sys


def main() -> int:
    """Main entry point for the activerun CLI."""
    from activerun.cli import run_cli

    return run_cli(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
