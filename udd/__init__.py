"""
udd - UDP Datagram Debugger.

udd sends hand-written datagrams to a single UDP peer and shows what comes back. Input
can be text with escapes, hex bytes, or commands for uqtt, a compact MQTT-like protocol
whose frames are decoded on receipt. It offers a CLI, a terminal UI, and an HTTP/MCP
server interface for AI agents.
"""
