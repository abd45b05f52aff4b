"""CLI for AgentComm - pick a transport and run it."""

from __future__ import annotations

import os

import click

from agentcomm import __version__
from agentcomm.config import (
    ENV_AGENTS_PATH,
    ENV_HOST,
    ENV_LOG_LEVEL,
    ENV_PORT,
    ENV_REPORTS_PATH,
    ENV_SHARED_SERVER_URL,
    Settings,
    setup_logging,
)
from agentcomm.rest import DEFAULT_REST_PORT

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def apply_env(**values: str | int | None) -> Settings:
    """Export the given flags as MCP_* variables and reload settings from them."""
    for name, value in values.items():
        if value is not None:
            os.environ[name] = str(value)
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    return settings


def common_options(func):
    """Options shared by every transport."""
    func = click.option(
        "--log-level",
        type=click.Choice(LOG_LEVELS, case_sensitive=False),
        default=None,
        help="Logging level (MCP_LOG_LEVEL)",
    )(func)
    func = click.option(
        "--reports-path",
        type=click.Path(file_okay=False),
        default=None,
        help="Directory for report documents (MCP_REPORTS_PATH)",
    )(func)
    func = click.option(
        "--agents-path",
        type=click.Path(file_okay=False),
        default=None,
        help="Root directory of agent namespaces (MCP_AGENTS_PATH)",
    )(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="agentcomm")
def main() -> None:
    """AgentComm - coordination server for autonomous agents.

    Agents register, own durable task queues, declare relationships and
    exchange messages over JSON-RPC.
    """
    pass


@main.command()
@common_options
def stdio(agents_path: str | None, reports_path: str | None, log_level: str | None) -> None:
    """Serve JSON-RPC over stdin/stdout (one process per client)."""
    import asyncio

    from mcp_agentcomm.server import run

    settings = apply_env(
        **{ENV_AGENTS_PATH: agents_path, ENV_REPORTS_PATH: reports_path, ENV_LOG_LEVEL: log_level}
    )
    asyncio.run(run(settings))


@main.command()
@common_options
@click.option("--port", type=int, default=None, help="Port to listen on (MCP_PORT)")
@click.option("--host", default=None, help="Host to bind to (MCP_HOST)")
def shared(
    agents_path: str | None,
    reports_path: str | None,
    log_level: str | None,
    port: int | None,
    host: str | None,
) -> None:
    """Start the shared WebSocket server for many clients."""
    import uvicorn

    from mcp_agentcomm.shared import create_app

    settings = apply_env(
        **{
            ENV_AGENTS_PATH: agents_path,
            ENV_REPORTS_PATH: reports_path,
            ENV_LOG_LEVEL: log_level,
            ENV_PORT: port,
            ENV_HOST: host,
        }
    )
    click.echo(f"Starting AgentComm shared server on ws://{settings.host}:{settings.port}/mcp", err=True)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


@main.command()
@click.option(
    "--server-url",
    default=None,
    help="Shared server WebSocket URL (MCP_SHARED_SERVER_URL)",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Logging level (MCP_LOG_LEVEL)",
)
def proxy(server_url: str | None, log_level: str | None) -> None:
    """Bridge stdin/stdout to a running shared server."""
    import asyncio

    from mcp_agentcomm.proxy import run

    settings = apply_env(**{ENV_SHARED_SERVER_URL: server_url, ENV_LOG_LEVEL: log_level})
    asyncio.run(run(settings))


@main.command()
@common_options
@click.option("--port", type=int, default=DEFAULT_REST_PORT, help="Port to run the REST API on")
@click.option("--host", default=None, help="Host to bind to (MCP_HOST)")
def rest(
    agents_path: str | None,
    reports_path: str | None,
    log_level: str | None,
    port: int,
    host: str | None,
) -> None:
    """Start the REST API over the command dispatcher."""
    import uvicorn

    from agentcomm.rest import create_app

    settings = apply_env(
        **{
            ENV_AGENTS_PATH: agents_path,
            ENV_REPORTS_PATH: reports_path,
            ENV_LOG_LEVEL: log_level,
            ENV_HOST: host,
        }
    )
    click.echo(f"Starting AgentComm REST API on {settings.host}:{port}", err=True)
    uvicorn.run(create_app(settings), host=settings.host, port=port)


if __name__ == "__main__":
    main()
