"""CLI entry point for ravenlsp."""

import sys


def main() -> int:
    """Main entry point for the ravenlsp CLI."""
    from ravenlsp.cli import run_cli

    return run_cli(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
