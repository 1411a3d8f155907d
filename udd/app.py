import argparse
import json
import os
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastmcp import FastMCP
from pydantic import BaseModel

from .core import engine, parse_address, state_manager
from .errors import EncodeError
from .payload import Mode, decode, encode

# --- Request models ---

class SessionRequest(BaseModel):
    target_host: str
    target_port: int
    bind_host: str = "0.0.0.0"
    bind_port: int = 0
    mode: Mode = Mode.AUTO

class SendRequest(BaseModel):
    raw_input: str
    mode: Optional[Mode] = None

class EncodeRequest(BaseModel):
    raw_input: str
    mode: Mode = Mode.AUTO
    msg_id: int = 1

class DecodeRequest(BaseModel):
    data_hex: str

def session_info() -> dict:
    session = engine.session
    if session is None:
        return {"status": "closed"}
    local = session.local_address
    return {
        "status": session.config.status,
        "target": session.config.target,
        "local": f"{local[0]}:{local[1]}" if local else None,
        "mode": session.config.mode.value,
        "error_msg": session.config.error_msg,
    }

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup logic
    print("udd server initializing...")
    target = os.environ.get("UDD_TARGET")
    if target:
        host, port = parse_address(target)
        bind_host, bind_port = parse_address(os.environ.get("UDD_BIND", "0.0.0.0:0"), "0.0.0.0")
        mode = Mode.parse(os.environ.get("UDD_MODE", "auto"))
        await engine.open_session(host, port, bind_host, bind_port, mode)
    yield
    # Shutdown logic
    print("udd server shutting down...")
    await engine.shutdown()

# --- MCP Server Definition ---
mcp = FastMCP("udd UDP Debugger")

@mcp.tool()
def get_help() -> str:
    """
    Returns a guide on how to use udd to talk to a UDP peer.
    Read this if you are unsure how to proceed.
    """
    return """
# udd User Guide for AI Agents

You are connected to **udd**, a UDP datagram debugger. It sends datagrams to a single
peer and shows what comes back, with decoding for the uqtt protocol (a compact MQTT-like
protocol carried one frame per datagram).

## Recommended Workflow

1.  **Check the session**: read the resource `udp://session/active`. If its status is
    not `open`, call `open_session(target_host, target_port)`.

2.  **Send something**: call `send_payload(raw_input, mode)`.
    *   `mode='auto'` (default) tries a uqtt command, then hex, then text.
    *   `mode='mqtt'`: uqtt commands such as `connect id1 keepalive=30`,
        `publish sensors/temp 21.5 qos=1`, `subscribe sensors/#`, `ping`, `disconnect`.
    *   `mode='hex'`: bytes as hex digits, e.g. `de ad be ef`.
    *   `mode='text'`: text with `\\n`, `\\t`, `\\r` and `\\\\` escapes.
    Use `encode_payload` first if you want to see the bytes without sending.

3.  **Read replies**: `list_traffic_history(limit=20)`. The `semantic` field holds the
    decoded view: `#<msg_id> CONNACK ACCEPTED session=false` for uqtt frames, or
    `hex=...` (plus `text="..."` when printable) for anything else.

## Debugging Scenarios

*   **No RX entries**: the peer is not answering. A status event with
    `ConnectionRefusedError` means nothing listens on the target port.
*   **RX shows hex instead of a uqtt description**: the peer's framing differs
    (wrong type byte or a length byte that does not match the datagram size).
    """

@mcp.tool()
async def open_session(target_host: str, target_port: int, bind_host: str = "0.0.0.0",
                       bind_port: int = 0, mode: str = "auto") -> str:
    """
    Open the UDP session, replacing any existing one.

    Args:
        target_host: The peer hostname or IP.
        target_port: The peer UDP port.
        bind_host: Local address to bind.
        bind_port: Local port to bind, 0 for any.
        mode: Default input mode: 'auto', 'text', 'hex' or 'mqtt'.
    """
    try:
        return await engine.open_session(target_host, target_port, bind_host, bind_port, Mode.parse(mode))
    except Exception as e:
        return f"Failed to open session: {str(e)}"

@mcp.tool()
def send_payload(raw_input: str, mode: str = "auto") -> str:
    """Encode `raw_input` in the given mode and send it to the session peer."""
    try:
        event = engine.send(raw_input, Mode.parse(mode))
    except (RuntimeError, ValueError) as e:
        return f"Send failed: {str(e)}"
    return f"Sent {event.size} bytes: {event.semantic}"

@mcp.tool()
def encode_payload(raw_input: str, mode: str = "auto") -> str:
    """Show the bytes `raw_input` would produce, as hex, without sending."""
    try:
        return encode(raw_input, Mode.parse(mode)).hex(' ')
    except (EncodeError, ValueError) as e:
        return f"Encode failed: {str(e)}"

@mcp.tool()
def decode_payload(data_hex: str) -> str:
    """Describe a datagram given as hex digits."""
    try:
        return decode(bytes.fromhex(data_hex))
    except ValueError as e:
        return f"Invalid hex: {str(e)}"

@mcp.tool()
async def list_traffic_history(limit: int = 10) -> str:
    """Get the most recent datagrams sent and received."""
    history = list(state_manager.packet_log)[-limit:]
    return json.dumps([h.__dict__ for h in history], indent=2)

@mcp.resource("udp://session/active")
def active_session() -> str:
    """Returns the state of the current UDP session."""
    return json.dumps(session_info(), indent=2)

# --- FastAPI App ---
app = FastAPI(lifespan=lifespan)

# Mount MCP
mcp_app = mcp.http_app(transport="sse")
app.mount("/mcp", mcp_app)

@app.get("/api/session")
async def get_session():
    return session_info()

@app.post("/api/session")
async def create_session(req: SessionRequest):
    try:
        msg = await engine.open_session(req.target_host, req.target_port, req.bind_host, req.bind_port, req.mode)
        return {"status": "success", "message": msg}
    except OSError as e:
        raise HTTPException(status_code=400, detail=str(e))

@app.delete("/api/session")
async def remove_session():
    msg = await engine.close_session()
    if msg is None:
        raise HTTPException(status_code=404, detail="No session open")
    return {"status": "success", "message": msg}

@app.post("/api/send")
async def send(req: SendRequest):
    try:
        event = engine.send(req.raw_input, req.mode)
    except EncodeError as e:
        raise HTTPException(status_code=400, detail={"error": str(e), "raw_input": req.raw_input})
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"status": "success", "id": event.id, "bytes": event.size, "data_hex": event.data_hex,
            "display": event.semantic}

@app.post("/api/encode")
async def encode_only(req: EncodeRequest):
    try:
        data = encode(req.raw_input, req.mode, req.msg_id)
    except EncodeError as e:
        raise HTTPException(status_code=400, detail={"error": str(e), "raw_input": req.raw_input})
    return {"bytes": len(data), "data_hex": data.hex(' '), "display": decode(data)}

@app.post("/api/decode")
async def decode_only(req: DecodeRequest):
    try:
        data = bytes.fromhex(req.data_hex)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"bytes": len(data), "display": decode(data)}

@app.get("/api/history")
async def get_history(limit: int = 10, direction: Optional[str] = None):
    """Get the most recent datagrams, optionally filtered by direction (TX or RX)."""
    history = list(state_manager.packet_log)
    if direction:
        history = [h for h in history if h.direction == direction.upper()]
    return [h.__dict__ for h in history[-limit:]]

@app.websocket("/ws/monitor")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()
    queue = await state_manager.subscribe()
    try:
        while True:
            event = await queue.get()
            await websocket.send_json(event)
    except WebSocketDisconnect:
        state_manager.unsubscribe(queue)

def main(argv=None):
    parser = argparse.ArgumentParser(prog="udd-server", description="udd HTTP API and MCP server")
    parser.add_argument("--host", default="0.0.0.0", help="HTTP listen address")
    parser.add_argument("--port", type=int, default=8002, help="HTTP listen port")
    parser.add_argument("--target", help="UDP peer host:port to open at startup")
    parser.add_argument("--bind", default="0.0.0.0:0", help="local UDP address:port")
    parser.add_argument("--mode", default="auto", choices=["auto", "text", "hex", "mqtt"])
    args = parser.parse_args(argv if argv is not None else sys.argv[1:])

    if args.target:
        os.environ["UDD_TARGET"] = args.target
        os.environ["UDD_BIND"] = args.bind
        os.environ["UDD_MODE"] = args.mode

    import uvicorn
    uvicorn.run("udd.app:app", host=args.host, port=args.port)

if __name__ == "__main__":
    main()
