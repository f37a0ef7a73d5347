"""Command-line interface for ravenlsp."""

from __future__ import annotations

import argparse
import asyncio
import shlex
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console

from ravenlsp import __version__

if TYPE_CHECKING:
    from ravenlsp.config import Config

console = Console(stderr=True)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="ravenlsp",
        description="Raven language server and client",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=None,
        help="Increase verbosity (can be repeated)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Config file path (default: ./ravenlsp.yaml)",
    )

    subparsers = parser.add_subparsers(dest="mode", help="Operating mode")

    subparsers.add_parser(
        "serve",
        help="Run the reference language server on stdio",
    )

    client_parser = subparsers.add_parser(
        "client",
        help="Start a server, open a document and query it",
    )
    client_parser.add_argument(
        "--server",
        help="Server command to spawn (default: from config)",
    )
    client_parser.add_argument(
        "--in-process",
        action="store_true",
        help="Run the reference server inside this process",
    )
    client_parser.add_argument(
        "--open",
        type=Path,
        required=True,
        help="Raven source file to open",
    )
    client_parser.add_argument(
        "--hover",
        metavar="LINE:COL",
        help="Zero-based position to request hover for",
    )

    return parser


def run_cli(args: Sequence[str]) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.mode is None:
        parser.print_help()
        return 1

    from ravenlsp.config import load_config
    from ravenlsp.logging import setup_logging

    config = load_config(parsed.config)
    if parsed.verbose is not None:
        config.logging = replace(config.logging, verbose=parsed.verbose)
    setup_logging(config.logging)

    if parsed.mode == "serve":
        from ravenlsp.server import serve_stdio
        return asyncio.run(serve_stdio())
    elif parsed.mode == "client":
        if parsed.server:
            config.server = replace(config.server, command=shlex.split(parsed.server))
        return asyncio.run(run_client(config, parsed.open, parsed.hover, parsed.in_process))
    else:
        parser.print_help()
        return 1


def _parse_position(value: str) -> tuple[int, int]:
    line, _, column = value.partition(":")
    return int(line), int(column or 0)


async def run_client(
    config: Config,
    path: Path,
    hover: str | None,
    in_process: bool = False,
) -> int:
    """Drive one session: start, open a document, optional hover, stop.

    Returns:
        Exit code
    """
    from ravenlsp.client import LanguageClient
    from ravenlsp.errors import RavenError
    from ravenlsp.protocol import methods
    from ravenlsp.session import connect_in_process

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        console.print(f"[red]Error reading {path}: {e}[/red]")
        return 1

    client = LanguageClient(config, connector=connect_in_process if in_process else None)
    try:
        handle = await client.start()
    except (RavenError, OSError, ValueError) as e:
        console.print(f"[red]Error starting language server: {e}[/red]")
        return 1

    capabilities = client.session.capabilities
    negotiated = sorted(capabilities.negotiated) if capabilities else []
    console.print(f"[green]Server ready[/green] [dim]features: {', '.join(negotiated)}[/dim]")

    exit_code = 0
    try:
        uri = path.resolve().as_uri()
        document = await client.session.open_document(uri, config.client.document_selector, text)
        console.print(f"[dim]Opened {uri} at version {document.version}[/dim]")

        if hover:
            line, column = _parse_position(hover)
            result = await client.request(
                methods.HOVER,
                {"textDocument": {"uri": uri}, "position": {"line": line, "character": column}},
            )
            if result:
                console.print(f"[cyan]hover[/cyan] {result['contents']}")
            else:
                console.print("[yellow]No hover result[/yellow]")
    except RavenError as e:
        console.print(f"[red]Error: {e}[/red]")
        exit_code = 1
    finally:
        await handle.dispose()

    return exit_code
