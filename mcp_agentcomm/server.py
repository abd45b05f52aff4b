"""Single-process stdio JSON-RPC server for AgentComm."""

from __future__ import annotations

import asyncio
import logging

from agentcomm.config import Settings, setup_logging
from agentcomm.coordinator import Coordinator
from agentcomm.dispatcher import CommandDispatcher
from mcp_agentcomm.stdio import serve_stdio

logger = logging.getLogger(__name__)


async def run(settings: Settings) -> None:
    """Serve one dispatcher over stdin/stdout with the mailbox poller running."""
    settings.agents_path.mkdir(parents=True, exist_ok=True)
    settings.reports_path.mkdir(parents=True, exist_ok=True)

    coordinator = Coordinator(settings.agents_path, poll_interval_ms=settings.poll_interval_ms)
    dispatcher = CommandDispatcher(coordinator)

    logger.info(f"AgentComm stdio server started (agents: {settings.agents_path.resolve()})")
    coordinator.poller.start()
    try:
        await serve_stdio(dispatcher.dispatch_line)
    finally:
        await coordinator.poller.stop()
        logger.info("AgentComm stdio server stopped")


def main() -> None:
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    asyncio.run(run(settings))


if __name__ == "__main__":
    main()
