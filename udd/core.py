import asyncio
import itertools
import logging
import time
import uuid
from collections import deque
from dataclasses import asdict, dataclass
from typing import Callable, Deque, List, Optional, Tuple

from .errors import EncodeError
from .payload import Mode, decode, encode

logger = logging.getLogger("udd.core")


def parse_address(value: str, default_host: Optional[str] = None) -> Tuple[str, int]:
    """Splits ``host:port`` (or ``[v6addr]:port``) into its parts."""
    value = value.strip()
    if value.startswith("["):
        host, sep, port = value[1:].partition("]:")
    else:
        host, sep, port = value.rpartition(":")
    if not sep:
        raise ValueError(f"expected host:port, got '{value}'")
    if not host:
        if default_host is None:
            raise ValueError(f"missing host in '{value}'")
        host = default_host
    if not port.isdigit() or not 0 <= int(port) <= 65535:
        raise ValueError(f"invalid port in '{value}'")
    return host, int(port)


@dataclass
class PacketEvent:
    id: str
    target: str
    direction: str  # "TX" or "RX"
    mode: str
    size: int
    data_hex: str
    data_str: str
    semantic: str
    peer: str
    timestamp: float
    type: str = "packet"


@dataclass
class ErrorEvent:
    target: str
    raw_input: str
    mode: str
    error: str
    timestamp: float
    type: str = "error"


@dataclass
class StatusEvent:
    target: str
    status: str  # "open", "closed", "error"
    error_msg: Optional[str]
    type: str = "status"


@dataclass
class SessionConfig:
    target_host: str
    target_port: int
    bind_host: str = "0.0.0.0"
    bind_port: int = 0
    mode: Mode = Mode.AUTO
    status: str = "closed"
    error_msg: Optional[str] = None

    @property
    def target(self) -> str:
        return f"{self.target_host}:{self.target_port}"

    @property
    def bind(self) -> str:
        return f"{self.bind_host}:{self.bind_port}"


class StateManager:
    """Singleton to hold the traffic log and broadcast events to subscribers."""
    def __init__(self):
        self.packet_log: Deque[PacketEvent] = deque(maxlen=2000)
        self.subscribers: List[asyncio.Queue] = []

    def log_packet(self, config: SessionConfig, direction: str, data: bytes,
                   peer: str = "", mode: Optional[Mode] = None) -> PacketEvent:
        event = PacketEvent(
            id=str(uuid.uuid4()),
            target=config.target,
            direction=direction,
            mode=(mode or config.mode).value,
            size=len(data),
            data_hex=data.hex(' '),
            data_str=data.decode('utf-8', errors='replace'),
            semantic=decode(data),
            peer=peer,
            timestamp=time.time(),
        )
        self.packet_log.append(event)
        self.broadcast(event)
        return event

    def log_error(self, config: SessionConfig, raw_input: str, mode: Mode, error: Exception) -> ErrorEvent:
        event = ErrorEvent(
            target=config.target,
            raw_input=raw_input,
            mode=mode.value,
            error=str(error),
            timestamp=time.time(),
        )
        self.broadcast(event)
        return event

    def find_packet(self, event_id: str) -> Optional[PacketEvent]:
        return next((e for e in self.packet_log if e.id == event_id), None)

    def broadcast(self, event):
        data = asdict(event)
        for q in self.subscribers:
            try:
                q.put_nowait(data)
            except asyncio.QueueFull:
                pass  # Drop event if subscriber is too slow

    async def subscribe(self) -> asyncio.Queue:
        q = asyncio.Queue(maxsize=100)
        self.subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue):
        if q in self.subscribers:
            self.subscribers.remove(q)

state_manager = StateManager()

ReceiveCallback = Callable[[PacketEvent], None]


class _DatagramProtocol(asyncio.DatagramProtocol):
    def __init__(self, session: "UdpSession"):
        self.session = session

    def datagram_received(self, data, addr):
        self.session.handle_datagram(data, addr)

    def error_received(self, exc):
        self.session.handle_error(exc)

    def connection_lost(self, exc):
        if exc is not None:
            self.session.handle_error(exc)


class UdpSession:
    """A UDP endpoint bound locally and connected to a single peer."""

    def __init__(self, config: SessionConfig, on_receive: Optional[ReceiveCallback] = None):
        self.config = config
        self.on_receive = on_receive
        self.transport: Optional[asyncio.DatagramTransport] = None
        self._msg_ids = itertools.count(1)

    @property
    def is_open(self) -> bool:
        return self.transport is not None and not self.transport.is_closing()

    @property
    def local_address(self) -> Optional[Tuple]:
        if self.transport is None:
            return None
        return self.transport.get_extra_info('sockname')

    def _set_status(self, status: str, error_msg: Optional[str] = None):
        self.config.status = status
        self.config.error_msg = error_msg
        state_manager.broadcast(StatusEvent(self.config.target, status, error_msg))

    async def open(self):
        loop = asyncio.get_running_loop()
        try:
            self.transport, _ = await loop.create_datagram_endpoint(
                lambda: _DatagramProtocol(self),
                local_addr=(self.config.bind_host, self.config.bind_port),
                remote_addr=(self.config.target_host, self.config.target_port),
            )
        except OSError as e:
            logger.error(f"Failed to open session to {self.config.target}: {e}")
            self._set_status("error", str(e))
            raise
        self._set_status("open")
        logger.info(f"Session bound to {self.local_address} -> {self.config.target}")

    async def close(self):
        if self.transport is not None:
            self.transport.close()
            self.transport = None
            self._set_status("closed")
            logger.info(f"Session to {self.config.target} closed")

    def next_msg_id(self) -> int:
        # 1..65535, skipping 0 on wrap
        return (next(self._msg_ids) - 1) % 0xFFFF + 1

    def send(self, raw_input: str, mode: Optional[Mode] = None) -> PacketEvent:
        """Encode ``raw_input`` and send it to the peer.

        Encode failures are logged as error events and re-raised.
        """
        mode = Mode(mode or self.config.mode)
        try:
            data = encode(raw_input, mode, msg_id=self.next_msg_id())
        except EncodeError as e:
            state_manager.log_error(self.config, raw_input, mode, e)
            raise
        return self.send_bytes(data, mode)

    def send_bytes(self, data: bytes, mode: Optional[Mode] = None) -> PacketEvent:
        if not self.is_open:
            raise RuntimeError(f"Session to {self.config.target} is not open")
        self.transport.sendto(data)
        logger.debug(f"TX {len(data)} bytes -> {self.config.target}")
        return state_manager.log_packet(self.config, "TX", data, self.config.target, mode)

    def replay(self, event_id: str) -> PacketEvent:
        """Resend the bytes of a previously logged datagram."""
        event = state_manager.find_packet(event_id)
        if event is None:
            raise ValueError(f"No packet with id {event_id}")
        return self.send_bytes(bytes.fromhex(event.data_hex), Mode(event.mode))

    def handle_datagram(self, data: bytes, addr):
        peer = f"{addr[0]}:{addr[1]}" if addr else self.config.target
        logger.debug(f"RX {len(data)} bytes <- {peer}")
        event = state_manager.log_packet(self.config, "RX", data, peer)
        if self.on_receive is not None:
            self.on_receive(event)

    def handle_error(self, exc: Exception):
        logger.warning(f"Transport error on {self.config.target}: {exc}")
        self._set_status("error", str(exc))


class SessionEngine:
    """Owns the single active session used by the server surfaces."""
    def __init__(self):
        self.session: Optional[UdpSession] = None

    async def open_session(self, target_host: str, target_port: int, bind_host: str = "0.0.0.0",
                           bind_port: int = 0, mode: Mode = Mode.AUTO) -> str:
        await self.close_session()
        config = SessionConfig(target_host, target_port, bind_host, bind_port, Mode(mode))
        session = UdpSession(config)
        await session.open()
        self.session = session
        return f"Session open {session.local_address[0]}:{session.local_address[1]} -> {config.target}"

    async def close_session(self) -> Optional[str]:
        if self.session is None:
            return None
        target = self.session.config.target
        await self.session.close()
        self.session = None
        return f"Session to {target} closed"

    def require_session(self) -> UdpSession:
        if self.session is None or not self.session.is_open:
            raise RuntimeError("No open session. Open one with a target host:port first.")
        return self.session

    def send(self, raw_input: str, mode: Optional[Mode] = None) -> PacketEvent:
        return self.require_session().send(raw_input, mode)

    async def shutdown(self):
        await self.close_session()
        logger.info("Engine shutdown complete.")

engine = SessionEngine()
