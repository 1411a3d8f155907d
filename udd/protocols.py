"""
Protocol Parsers.

This module translates between uqtt command lines typed by a user
(``connect id1 keepalive=30``) and the binary frames defined in
:mod:`udd.uqtt`, and renders received frames as readable descriptions.
"""

from typing import Callable, Dict, List, Optional, Tuple

from .errors import InvalidProtocolCommand
from .uqtt import (
    ConnAck,
    Connect,
    ConnectReturnCode,
    DecodeError,
    Disconnect,
    Packet,
    PingReq,
    PingResp,
    PubAck,
    Publish,
    QoS,
    SubAck,
    SubAckReturnCode,
    Subscribe,
    SubscribeFilter,
    UdpFrame,
    UqttError,
)

PAYLOAD_PREVIEW = 30


def _split_option(token: str) -> Tuple[Optional[str], str]:
    if "=" in token:
        key, value = token.split("=", 1)
        return key, value
    return None, token


def _parse_qos(token: str, value: str) -> QoS:
    if value not in ("0", "1", "2"):
        raise InvalidProtocolCommand("qos must be 0, 1, or 2", token)
    return QoS(int(value))


def _parse_bool(token: str, value: str) -> bool:
    if value in ("true", "1"):
        return True
    if value in ("false", "0"):
        return False
    raise InvalidProtocolCommand(f"expected true/false, got '{value}'", token)


def _connect(args: List[str]) -> Packet:
    client_id = "id1"
    if args and "=" not in args[0]:
        client_id, args = args[0], args[1:]
    conn = Connect(client_id)
    for token in args:
        key, value = _split_option(token)
        if key in ("keepalive", "ka"):
            try:
                keep_alive = int(value)
            except ValueError:
                keep_alive = -1
            if not 0 <= keep_alive <= 0xFFFF:
                raise InvalidProtocolCommand("invalid keepalive", token)
            conn.keep_alive = keep_alive
        elif key == "user":
            conn.username = value
        elif key == "pass":
            conn.password = value.encode("utf-8")
        elif key == "clean":
            conn.clean_session = _parse_bool(token, value)
        elif key is None:
            raise InvalidProtocolCommand(f"unexpected argument: {token}", token)
        else:
            raise InvalidProtocolCommand(f"unknown option: {key}", token)
    return conn


def _publish(args: List[str]) -> Packet:
    if len(args) < 2:
        raise InvalidProtocolCommand(
            "usage: publish <topic> <payload> [qos=0|1|2] [retain]",
            args[0] if args else "publish",
        )
    pub = Publish(args[0])
    payload_parts = []
    for token in args[1:]:
        key, value = _split_option(token)
        if key == "qos":
            pub.qos = _parse_qos(token, value)
        elif token == "retain":
            pub.retain = True
        else:
            payload_parts.append(token)
    pub.payload = " ".join(payload_parts).encode("utf-8")
    return pub


def _subscribe(args: List[str]) -> Packet:
    qos = QoS.AT_MOST_ONCE
    topics = []
    for token in args:
        key, value = _split_option(token)
        if key == "qos":
            qos = _parse_qos(token, value)
        elif key is None:
            topics.extend(t for t in token.split(",") if t)
        else:
            raise InvalidProtocolCommand(f"unknown option: {key}", token)
    if not topics:
        raise InvalidProtocolCommand("subscribe requires at least one topic", "subscribe")
    return Subscribe([SubscribeFilter(t, qos) for t in topics])


def _connack(args: List[str]) -> Packet:
    ack = ConnAck()
    for token in args:
        key, value = _split_option(token)
        if token == "accepted":
            ack.return_code = ConnectReturnCode.ACCEPTED
        elif token in ("rejected", "unauthorized"):
            ack.return_code = ConnectReturnCode.NOT_AUTHORIZED
        elif token == "unavailable":
            ack.return_code = ConnectReturnCode.SERVER_UNAVAILABLE
        elif key == "session":
            ack.session_present = _parse_bool(token, value)
        else:
            raise InvalidProtocolCommand(f"unexpected argument: {token}", token)
    return ack


def _suback(args: List[str]) -> Packet:
    codes = []
    for token in args:
        if token in ("0", "1", "2"):
            codes.append(SubAckReturnCode(int(token)))
        elif token in ("fail", "failure"):
            codes.append(SubAckReturnCode.FAILURE)
        else:
            raise InvalidProtocolCommand(f"invalid suback code: {token}", token)
    return SubAck(codes)


def _no_arguments(packet_cls) -> Callable[[List[str]], Packet]:
    def build(args: List[str]) -> Packet:
        if args:
            raise InvalidProtocolCommand(f"unexpected argument: {args[0]}", args[0])
        return packet_cls()
    return build


class UqttParser:
    """Parses uqtt command lines into frames and describes received frames.

    Command syntax::

        connect <client_id> [keepalive=N] [user=X] [pass=X] [clean=true|false]
        publish <topic> <payload...> [qos=0|1|2] [retain]
        subscribe <topic>[,<topic>...] [qos=0|1|2]
        disconnect
        ping

    Broker-side replies (``connack``, ``suback``, ``puback``, ``pingresp``)
    are accepted as well so either end of a conversation can be emulated.
    """

    COMMANDS: Dict[str, Callable[[List[str]], Packet]] = {
        "connect": _connect,
        "publish": _publish,
        "pub": _publish,
        "subscribe": _subscribe,
        "sub": _subscribe,
        "disconnect": _no_arguments(Disconnect),
        "disc": _no_arguments(Disconnect),
        "ping": _no_arguments(PingReq),
        "connack": _connack,
        "suback": _suback,
        "puback": _no_arguments(PubAck),
        "pingresp": _no_arguments(PingResp),
        "pong": _no_arguments(PingResp),
    }

    @classmethod
    def parse(cls, line: str, msg_id: int = 1) -> UdpFrame:
        """Parses a command line into a frame.

        Args:
            line: The command line, keyword first.
            msg_id: Message id to stamp on the frame.

        Raises:
            InvalidProtocolCommand: If the keyword is unknown or the arguments are malformed.
        """
        tokens = line.split()
        if not tokens:
            raise InvalidProtocolCommand("empty command", "")
        builder = cls.COMMANDS.get(tokens[0].lower())
        if builder is None:
            raise InvalidProtocolCommand(f"unknown command: {tokens[0]}", tokens[0])
        return UdpFrame(msg_id, builder(tokens[1:]))

    @classmethod
    def encode(cls, line: str, msg_id: int = 1) -> bytes:
        """Parses a command line and serializes the resulting frame."""
        try:
            return cls.parse(line, msg_id).encode()
        except UqttError as e:
            raise InvalidProtocolCommand(str(e), line.split()[0])
        except UnicodeEncodeError as e:
            raise InvalidProtocolCommand("command is not encodable as UTF-8", e.object[e.start:e.end])

    @staticmethod
    def _preview(payload: bytes) -> str:
        text = payload.decode("utf-8", errors="replace")
        if len(text) > PAYLOAD_PREVIEW:
            return text[:PAYLOAD_PREVIEW - 3] + "..."
        return text

    @classmethod
    def describe_packet(cls, packet: Packet) -> str:
        if isinstance(packet, Connect):
            desc = f"CONNECT client={packet.client_id} ka={packet.keep_alive}"
            if packet.username is not None:
                desc += f" user={packet.username}"
            if packet.password is not None:
                desc += f" pass=<{len(packet.password)} bytes>"
            if not packet.clean_session:
                desc += " clean=false"
            return desc
        if isinstance(packet, ConnAck):
            return f"CONNACK {packet.return_code.name} session={str(packet.session_present).lower()}"
        if isinstance(packet, Publish):
            desc = f'PUBLISH {packet.topic} qos={int(packet.qos)} "{cls._preview(packet.payload)}"'
            return desc + " retain" if packet.retain else desc
        if isinstance(packet, Subscribe):
            topics = ", ".join(f"{f.topic}:{int(f.qos)}" for f in packet.filters)
            return f"SUBSCRIBE [{topics}]"
        if isinstance(packet, SubAck):
            return f"SUBACK [{', '.join(c.name for c in packet.return_codes)}]"
        return packet.type.name

    @classmethod
    def describe(cls, data: bytes) -> Optional[str]:
        """Describes a datagram if it holds a valid uqtt frame.

        Args:
            data: The raw datagram.

        Returns:
            A string like ``#7 PUBLISH sensors/temp qos=0 "21.5"``, or ``None``
            if the bytes are not a uqtt frame.
        """
        try:
            frame = UdpFrame.decode(data)
        except DecodeError:
            return None
        return f"#{frame.msg_id} {cls.describe_packet(frame.packet)}"
