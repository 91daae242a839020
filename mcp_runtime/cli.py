"""
mcp-runtime: inspect and exercise configured tool servers from a shell.

Usage:
    # Configured servers (nothing is started)
    mcp-runtime --list-servers

    # Start a server and list its tools
    mcp-runtime --list-tools research

    # Call a tool
    mcp-runtime --call research search_papers --args '{"query": "transformer models", "max_results": 3}'

    # Health, cache and stats of every server
    mcp-runtime --status --config ./.mcp-servers.json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from mcp_runtime.config import get_settings, load_config
from mcp_runtime.errors import ConfigError, ToolRuntimeError
from mcp_runtime.manager import ToolServerManager

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-runtime",
        description="Inspect and call stdio tool servers.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mcp-runtime --list-servers
  mcp-runtime --list-tools research
  mcp-runtime --call research search_papers --args '{"query": "RL agents"}'
        """,
    )
    action = parser.add_mutually_exclusive_group(required=True)
    action.add_argument("--list-servers", action="store_true", help="List configured servers and exit")
    action.add_argument("--list-tools", metavar="SERVER", help="List the tools a server advertises")
    action.add_argument("--call", nargs=2, metavar=("SERVER", "TOOL"), help="Invoke a tool")
    action.add_argument("--status", action="store_true", help="Health check every configured server")
    parser.add_argument("--args", type=str, default="{}", help="JSON object of tool arguments (with --call)")
    parser.add_argument("--timeout", type=float, default=None, help="Per-call timeout in seconds (with --call)")
    parser.add_argument("--config", "-c", type=str, default=None, help="Path to the server config file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")
    return parser


async def run(args: argparse.Namespace) -> int:
    config = load_config(args.config)

    if args.list_servers:
        _print({
            name: {
                "command": [server.command, *server.args],
                "description": server.description,
                "fallback": server.fallback,
            }
            for name, server in config.servers.items()
        })
        return 0

    async with ToolServerManager.from_config(config) as manager:
        if args.list_tools:
            tools = await manager.list_tools(args.list_tools)
            _print([tool.to_dict() for tool in tools])
            return 0

        if args.call:
            server_id, tool_name = args.call
            try:
                arguments = json.loads(args.args)
            except ValueError as e:
                raise SystemExit(f"--args is not valid JSON: {e}")
            result = await manager.invoke(server_id, tool_name, arguments, timeout=args.timeout)
            _print(result.to_dict())
            return 0 if result.success else 1

        report = await manager.health_check()
        _print(report)
        return 0 if report["status"] == "healthy" else 1


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else getattr(logging, get_settings().log_level.upper(), logging.INFO)
    # Logs go to stderr so stdout stays parseable JSON
    logging.basicConfig(level=level, stream=sys.stderr, format="%(levelname)s: %(message)s")

    try:
        return asyncio.run(run(args))
    except ConfigError as e:
        logger.error(str(e))
        return 2
    except (ToolRuntimeError, ValueError) as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        print("\nShutting down tool servers...", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
