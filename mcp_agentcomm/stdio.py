"""Newline-delimited JSON-RPC over stdin/stdout."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import IO, Any

from mcp.types import PARSE_ERROR

from agentcomm.dispatcher import error_response

logger = logging.getLogger(__name__)

# Largest single request line accepted from stdin
MAX_LINE_BYTES = 16 * 1024 * 1024

LineHandler = Callable[[str], Awaitable[dict[str, Any] | None]]
Writer = Callable[[dict[str, Any]], None]


def write_message(message: dict[str, Any]) -> None:
    """Write one JSON-RPC document to stdout as a single line."""
    print(json.dumps(message), flush=True)


async def _respond(handle_line: LineHandler, line: str, write: Writer) -> None:
    try:
        response = await handle_line(line)
    except Exception:
        logger.error("Unhandled error while processing stdin request", exc_info=True)
        return
    if response is not None:
        write(response)


async def serve_lines(
    reader: asyncio.StreamReader,
    handle_line: LineHandler,
    write: Writer = write_message,
) -> None:
    """Dispatch each line from reader as it arrives until EOF.

    Requests are not queued: each line runs as its own task, so responses can
    be written in a different order than the requests were read. Lines that
    are too long or not UTF-8 get a parse error and reading continues.
    """
    in_flight: set[asyncio.Task] = set()
    while True:
        try:
            raw = await reader.readline()
        except ValueError as e:
            # readline drops the oversized chunk before raising
            logger.error(f"Skipping oversized request line: {e}")
            write(error_response(None, PARSE_ERROR, "Parse error: request line too long"))
            continue
        if not raw:
            break

        try:
            line = raw.decode("utf-8").strip()
        except UnicodeDecodeError as e:
            logger.error(f"Skipping request line that is not UTF-8: {e}")
            write(error_response(None, PARSE_ERROR, f"Parse error: {e}"))
            continue
        if not line:
            continue

        task = asyncio.create_task(_respond(handle_line, line, write))
        in_flight.add(task)
        task.add_done_callback(in_flight.discard)

    logger.info("stdin closed")
    if in_flight:
        await asyncio.gather(*in_flight)


async def serve_stdio(
    handle_line: LineHandler,
    stdin: IO[bytes] | IO[str] | None = None,
    write: Writer = write_message,
) -> None:
    """Read requests from stdin (or the given pipe) until EOF."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=MAX_LINE_BYTES)
    await loop.connect_read_pipe(
        lambda: asyncio.StreamReaderProtocol(reader), stdin if stdin is not None else sys.stdin
    )
    await serve_lines(reader, handle_line, write)
