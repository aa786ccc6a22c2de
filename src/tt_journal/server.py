"""tt-journal entry point: MCP server and audit commands."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional, TextIO

# MCP imports are optional - only needed when running the server
try:
    from mcp.server import Server  # pragma: no cover
    from mcp.server.stdio import stdio_server  # pragma: no cover
    from mcp.types import Tool, TextContent  # pragma: no cover
    HAS_MCP = True  # pragma: no cover
except ImportError:
    HAS_MCP = False
    Server = None  # type: ignore
    Tool = None  # type: ignore
    TextContent = None  # type: ignore

from .audit import repair_tree, verify_tree
from .config import JournalConfig, load_config
from .engine import JournalEngine
from .tools import execute_tool, make_tools


def create_server(config: JournalConfig) -> "Server":
    """Create and configure the MCP server.

    Args:
        config: Journal configuration

    Returns:
        Configured MCP Server instance

    Raises:
        ImportError: If MCP package is not installed
    """
    if not HAS_MCP:
        raise ImportError(
            "MCP package not installed. Install with: pip install tt-journal[mcp]"
        )

    server = Server("tt-journal")
    engine = JournalEngine(config)
    tool_defs = make_tools(engine)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """Return list of available tools."""
        return [
            Tool(
                name=t["name"],
                description=t["description"],
                inputSchema=t["inputSchema"],
            )
            for t in tool_defs.values()
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Handle tool invocation."""
        result = await execute_tool(engine, name, arguments)
        return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]

    return server


async def run_server(config: JournalConfig) -> None:
    """Run the MCP server with stdio transport."""
    if not HAS_MCP:
        raise ImportError(
            "MCP package not installed. Install with: pip install tt-journal[mcp]"
        )

    server = create_server(config)  # pragma: no cover

    async with stdio_server() as (read_stream, write_stream):  # pragma: no cover
        await server.run(  # pragma: no cover
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )


# ========== Audit commands ==========


def run_audit_verify(root: Path, out: TextIO = sys.stdout) -> int:
    """Print one OK/ERR line per journal file; return the exit code."""
    summary = verify_tree(root)
    for report in summary.reports:
        if report.ok:
            print(f"OK  {report.path}", file=out)
        else:
            for problem in report.problems:
                print(f"    {problem}", file=out)
            print(f"ERR {report.path}", file=out)
    return 0 if summary.ok else 1


def run_audit_repair(root: Path, dry_run: bool, apply: bool, out: TextIO = sys.stdout) -> int:
    """Repair every journal file, printing progress; return the exit code."""
    summary = repair_tree(root, dry_run=dry_run, apply=apply)

    for result in summary.results:
        for warning in result.warnings:
            print(f"WARN: {result.path}: {warning}", file=out)
        for message in result.messages:
            print(f"INFO: {result.path}: {message}", file=out)
        if result.preview:
            print(f"DIFF preview for {result.path} (first changes shown):", file=out)
            for line in result.preview:
                print(line, file=out)

    for path, error in summary.errors.items():
        print(f"ERROR repairing {path}: {error}", file=out)

    print(
        f"\nSummary: changed files: {summary.changed_files}, "
        f".repair files written: {summary.written_repairs}, errors: {len(summary.errors)}",
        file=out,
    )
    return 2 if summary.errors else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tt-journal",
        description="Append-only, hash-chained time-tracking journal",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        help="Directory holding config.toml/config.json (default: ~/.tt)",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        help="Path to config file (default: auto-detect in config dir)",
    )
    parser.add_argument(
        "--journal-root",
        type=Path,
        help="Override the journal root directory",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log debug output to stderr",
    )

    commands = parser.add_subparsers(dest="command")
    commands.add_parser("serve", help="Run the MCP server on stdio (default)")

    audit = commands.add_parser("audit", help="Audit and repair the per-day hash chains")
    audit_commands = audit.add_subparsers(dest="audit_command", required=True)
    audit_commands.add_parser("verify", help="Verify per-day journal hash chains")
    repair = audit_commands.add_parser(
        "repair",
        help="Propose (or apply) canonical rewrites of journal files",
    )
    repair.add_argument(
        "--dry-run",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Write .repair proposals and leave originals untouched",
    )
    repair.add_argument(
        "--apply",
        action="store_true",
        help="Overwrite originals and anchors after making .bak backups (requires --no-dry-run)",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config = load_config(args.config_dir, args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    if args.journal_root is not None:
        config.journal_root = args.journal_root.expanduser().resolve()

    if args.command == "audit":
        if args.audit_command == "verify":
            sys.exit(run_audit_verify(config.journal_root))

        if args.apply and args.dry_run:
            print("NOTE: dry run is on (pass --no-dry-run); --apply has no effect", file=sys.stderr)
        sys.exit(run_audit_repair(config.journal_root, dry_run=args.dry_run, apply=args.apply))

    # Check for MCP before running in server mode
    if not HAS_MCP:
        print("Error: MCP package not installed.", file=sys.stderr)
        print("Install with: pip install tt-journal[mcp]", file=sys.stderr)
        sys.exit(1)

    asyncio.run(run_server(config))


if __name__ == "__main__":  # pragma: no cover
    main()
