"""JSON-RPC transports for AgentComm: stdio server, shared WebSocket server and stdio proxy."""
