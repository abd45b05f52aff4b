"""Environment-driven settings and logging setup for AgentComm."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

DEFAULT_AGENTS_PATH = Path("./agents")
DEFAULT_REPORTS_PATH = Path("./reports")
DEFAULT_PORT = 8080
DEFAULT_HOST = "127.0.0.1"
DEFAULT_SHARED_SERVER_URL = "ws://localhost:8080/mcp"
DEFAULT_POLL_INTERVAL_MS = 1000

# Environment variable names shared with the CLI
ENV_AGENTS_PATH = "MCP_AGENTS_PATH"
ENV_REPORTS_PATH = "MCP_REPORTS_PATH"
ENV_PORT = "MCP_PORT"
ENV_HOST = "MCP_HOST"
ENV_SHARED_SERVER_URL = "MCP_SHARED_SERVER_URL"
ENV_LOG_LEVEL = "MCP_LOG_LEVEL"
ENV_POLL_INTERVAL_MS = "MCP_POLL_INTERVAL_MS"


@dataclass
class Settings:
    """Runtime settings for every transport."""

    agents_path: Path = DEFAULT_AGENTS_PATH
    reports_path: Path = DEFAULT_REPORTS_PATH
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    shared_server_url: str = DEFAULT_SHARED_SERVER_URL
    log_level: str = "INFO"
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from MCP_* environment variables."""
        return cls(
            agents_path=Path(os.getenv(ENV_AGENTS_PATH, str(DEFAULT_AGENTS_PATH))),
            reports_path=Path(os.getenv(ENV_REPORTS_PATH, str(DEFAULT_REPORTS_PATH))),
            port=int(os.getenv(ENV_PORT, str(DEFAULT_PORT))),
            host=os.getenv(ENV_HOST, DEFAULT_HOST),
            shared_server_url=os.getenv(ENV_SHARED_SERVER_URL, DEFAULT_SHARED_SERVER_URL),
            log_level=os.getenv(ENV_LOG_LEVEL, "INFO").upper(),
            poll_interval_ms=int(os.getenv(ENV_POLL_INTERVAL_MS, str(DEFAULT_POLL_INTERVAL_MS))),
        )


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging on stderr.

    stdout is reserved for JSON-RPC traffic on the stdio transports.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
