"""Tests for newline-delimited JSON-RPC over stdin/stdout."""

import asyncio
import json
import os

import pytest

from mcp_agentcomm.stdio import serve_lines, serve_stdio, write_message


def request(method, request_id):
    return json.dumps({"jsonrpc": "2.0", "id": request_id, "method": method}).encode() + b"\n"


def feed(reader: asyncio.StreamReader, *chunks: bytes) -> None:
    for chunk in chunks:
        reader.feed_data(chunk)
    reader.feed_eof()


class TestWriteMessage:
    """Test one-line JSON output."""

    def test_single_line(self, capsys):
        """Each message is one JSON document per line."""
        write_message({"jsonrpc": "2.0", "id": 1, "result": {"text": "a\nb"}})

        out = capsys.readouterr().out
        assert out.count("\n") == 1
        assert json.loads(out)["result"]["text"] == "a\nb"


class TestServeLines:
    """Test the read-dispatch loop."""

    @pytest.fixture
    def responses(self):
        return []

    async def test_every_request_answered(self, dispatcher, responses):
        """Several requests all get responses and blank lines are skipped."""
        reader = asyncio.StreamReader()
        feed(reader, request("ping", 1), b"\n   \n", request("tools/list", 2), request("bogus", 3))

        await serve_lines(reader, dispatcher.dispatch_line, responses.append)

        by_id = {r["id"]: r for r in responses}
        assert sorted(by_id) == [1, 2, 3]
        assert by_id[1]["result"] == {}
        assert "tools" in by_id[2]["result"]
        assert by_id[3]["error"]["code"] == -32601

    async def test_malformed_json(self, dispatcher, responses):
        """A line that is not JSON gets a parse error and the loop keeps going."""
        reader = asyncio.StreamReader()
        feed(reader, b"{not json\n", request("ping", 7))

        await serve_lines(reader, dispatcher.dispatch_line, responses.append)

        assert responses[0]["id"] is None
        assert responses[0]["error"]["code"] == -32700
        assert responses[1]["id"] == 7

    async def test_invalid_utf8_does_not_stop_loop(self, dispatcher, responses):
        """Bytes that are not UTF-8 get a parse error; later requests are still answered."""
        reader = asyncio.StreamReader()
        feed(reader, b"\xff\xfe\n", request("ping", 1))

        await serve_lines(reader, dispatcher.dispatch_line, responses.append)

        assert responses[0]["id"] is None
        assert responses[0]["error"]["code"] == -32700
        assert responses[1] == {"jsonrpc": "2.0", "id": 1, "result": {}}

    async def test_oversized_line_skipped(self, dispatcher, responses):
        """A line over the reader limit is dropped and reading continues."""
        reader = asyncio.StreamReader(limit=64)
        feed(reader, b'{"padding": "' + b"x" * 200 + b'"}\n', request("ping", 2))

        await serve_lines(reader, dispatcher.dispatch_line, responses.append)

        assert responses[0]["error"]["code"] == -32700
        assert responses[1] == {"jsonrpc": "2.0", "id": 2, "result": {}}

    async def test_responses_not_queued(self, responses):
        """A slow request does not hold back a later fast one."""

        async def handle(line):
            message = json.loads(line)
            if message["method"] == "slow":
                await asyncio.sleep(0.05)
            return {"jsonrpc": "2.0", "id": message["id"], "result": {}}

        reader = asyncio.StreamReader()
        feed(reader, request("slow", 1), request("fast", 2))

        await serve_lines(reader, handle, responses.append)

        assert [r["id"] for r in responses] == [2, 1]

    async def test_handler_exception_is_contained(self, responses):
        """A handler that raises produces no response and the next line is still handled."""

        async def handle(line):
            message = json.loads(line)
            if message["method"] == "explode":
                raise RuntimeError("boom")
            return {"jsonrpc": "2.0", "id": message["id"], "result": {}}

        reader = asyncio.StreamReader()
        feed(reader, request("explode", 1), request("ping", 2))

        await serve_lines(reader, handle, responses.append)

        assert [r["id"] for r in responses] == [2]


class TestServeStdio:
    """Test the adapter against a real pipe."""

    async def test_pipe_until_eof(self, dispatcher):
        """Requests written to the pipe are answered and the loop ends at EOF."""
        read_fd, write_fd = os.pipe()
        os.write(write_fd, request("ping", 1) + b"\xff\n" + request("initialize", 2))
        os.close(write_fd)

        responses = []
        with os.fdopen(read_fd, "rb", buffering=0) as pipe:
            await asyncio.wait_for(serve_stdio(dispatcher.dispatch_line, pipe, responses.append), timeout=5)

        by_id = {r["id"]: r for r in responses}
        assert by_id[1]["result"] == {}
        assert by_id[2]["result"]["protocolVersion"] == "2024-11-05"
        assert by_id[None]["error"]["code"] == -32700
