"""AgentComm - file-backed coordination engine for autonomous agents.

Agents register, own durable task queues, declare relationships with each
other and exchange asynchronous mailbox messages, all driven through a
JSON-RPC command surface (stdio, shared WebSocket server, or a stdio proxy).
"""

__version__ = "0.1.0"
