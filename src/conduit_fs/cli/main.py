"""
Command line interface for the conduit filesystem server.

``serve`` speaks line-delimited JSON on stdin/stdout; all logging goes to
stderr so the transport stays clean.
"""

import asyncio
import json
import logging
import sys
from typing import Any, Optional, TextIO

import click
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from conduit_fs import __version__
from conduit_fs.context import ConduitContext
from conduit_fs.filesystem import ConduitTools, ErrorCode
from conduit_fs.security import PUBLIC_INTENTS, ResolutionIntent
from conduit_fs.settings import ConduitSettings

# Load environment variables
load_dotenv()

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", verbose: bool = False) -> None:
    """Setup rich logging on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
        force=True,
    )
    # Reduce noise from httpx
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _load_context(ctx: click.Context) -> ConduitContext:
    """Build the server context once per invocation."""
    obj = ctx.ensure_object(dict)
    if "context" not in obj:
        config_file: Optional[str] = obj.get("config_file")
        try:
            settings = (
                ConduitSettings.from_file(config_file) if config_file else ConduitSettings()
            )
        except (ValidationError, FileNotFoundError) as e:
            err_console.print(f"[bold red]Invalid configuration:[/bold red] {e}")
            ctx.exit(2)
        setup_logging(settings.log_level, verbose=obj.get("verbose", False))
        obj["context"] = ConduitContext.from_settings(settings)
    return obj["context"]


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False),
    default=None,
    help="YAML or JSON settings file (default: CONDUIT_* environment variables)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[str], verbose: bool):
    """Conduit - sandboxed filesystem tools for LLM agents."""
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file
    ctx.obj["verbose"] = verbose


@cli.command()
@click.argument("path")
@click.option(
    "--intent",
    "-i",
    type=click.Choice([intent.value for intent in PUBLIC_INTENTS]),
    default=ResolutionIntent.READ.value,
    help="Declared purpose of the access",
)
@click.pass_context
def check(ctx: click.Context, path: str, intent: str):
    """
    Validate PATH and print the canonical path or the failure kind.

    Exits with status 1 if validation fails.
    """
    context = _load_context(ctx)
    result = context.validator.check(path, ResolutionIntent(intent))
    if result.ok:
        click.echo(result.path)
        return
    click.echo(f"{result.failure.value}: {result.message}", err=True)
    ctx.exit(1)


@cli.command()
@click.pass_context
def config(ctx: click.Context):
    """Show the active configuration and the allowed-path set."""
    context = _load_context(ctx)

    table = Table(title="Active configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in context.settings.summary().items():
        table.add_row(key, str(value))
    console.print(table)

    paths = Table(title="Allowed paths")
    paths.add_column("#", justify="right")
    paths.add_column("Path", style="green")
    for index, path in enumerate(context.allowed_paths, start=1):
        paths.add_row(str(index), path)
    console.print(paths)

    if not context.settings.allowed_paths_explicit:
        console.print("[yellow]CONDUIT_ALLOWED_PATHS not set; defaults in use.[/yellow]")


@cli.command()
@click.pass_context
def tools(ctx: click.Context):
    """Print the tool schemas as JSON."""
    context = _load_context(ctx)
    click.echo(json.dumps(ConduitTools(context).get_tool_schemas(), indent=2))


@cli.command()
@click.pass_context
def serve(ctx: click.Context):
    """
    Serve tool calls as line-delimited JSON on stdin/stdout.

    Request:  {"id": 1, "tool": "read", "arguments": {...}}
    Response: {"id": 1, "result": {...}} or {"id": 1, "error": {...}}
    """
    context = _load_context(ctx)
    logger.info(f"Conduit {__version__} serving on stdio")
    stdin = click.get_text_stream("stdin")
    stdout = click.get_text_stream("stdout")
    asyncio.run(_serve(ConduitTools(context), stdin, stdout))


async def _serve(tools: ConduitTools, stdin: TextIO, stdout: TextIO) -> None:
    try:
        for line in stdin:
            if not line.strip():
                continue
            response = await handle_request_line(tools, line)
            stdout.write(json.dumps(response) + "\n")
            stdout.flush()
    finally:
        await tools.close()


def _error(request_id: Any, code: ErrorCode, message: str) -> dict[str, Any]:
    return {"id": request_id, "error": {"error_code": code.value, "error_message": message}}


async def handle_request_line(tools: ConduitTools, line: str) -> dict[str, Any]:
    """
    Handle one request line.

    Args:
        tools: Tool dispatcher
        line: Raw JSON request

    Returns:
        Response object
    """
    try:
        request = json.loads(line)
    except json.JSONDecodeError as e:
        return _error(None, ErrorCode.MCP_INVALID_REQUEST, f"Malformed JSON: {e}")

    if not isinstance(request, dict):
        return _error(None, ErrorCode.MCP_INVALID_REQUEST, "Request must be a JSON object")

    request_id = request.get("id")
    tool_name = request.get("tool")
    arguments = request.get("arguments", {})
    if not isinstance(tool_name, str) or not isinstance(arguments, dict):
        return _error(
            request_id,
            ErrorCode.MCP_INVALID_REQUEST,
            "Request requires a string 'tool' and an object 'arguments'",
        )

    try:
        result = await tools.execute_tool(tool_name, arguments)
    except ValueError as e:
        return _error(request_id, ErrorCode.UNKNOWN_TOOL, str(e))
    except Exception as e:
        logger.error(f"Tool {tool_name} failed unexpectedly: {e}", exc_info=True)
        return _error(request_id, ErrorCode.INTERNAL_SERVER_ERROR, f"Unexpected error: {e}")
    return {"id": request_id, "result": result}


def main() -> None:
    """Console script entry point."""
    cli(obj={})


if __name__ == "__main__":
    sys.exit(main())
