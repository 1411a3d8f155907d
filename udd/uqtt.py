"""
uqtt wire codec.

uqtt is a compact MQTT-like protocol carried one frame per UDP datagram.

Frame layout::

    +----------+------------+-------------+---------------------+
    |   Type   |   Length   |    MsgID    |       Payload       |
    |  1 byte  |   1 byte   | 2 bytes BE  |  Length - 4 bytes   |
    +----------+------------+-------------+---------------------+

- Type: message type, see :class:`MessageType`
- Length: total frame length including the 4-byte header (max 255)
- MsgID: big-endian message identifier chosen by the sender
- Strings inside payloads are UTF-8 prefixed by a big-endian u16 length
"""

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional, Tuple, Union

HEADER_LEN = 4
MAX_FRAME_LEN = 255


class UqttError(ValueError):
    """Base class for codec errors."""


class PayloadTooLarge(UqttError):
    def __init__(self, length: int):
        super().__init__(f"frame of {length} bytes exceeds maximum of {MAX_FRAME_LEN}")
        self.length = length


class FieldTooLong(UqttError):
    def __init__(self, what: str, length: int, limit: int):
        super().__init__(f"{what} of {length} exceeds maximum of {limit}")
        self.length = length
        self.limit = limit


class DecodeError(UqttError):
    """Raised when bytes do not form a valid uqtt frame."""


class BufferTooShort(DecodeError):
    def __init__(self, expected: int, actual: int):
        super().__init__(f"buffer too short: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class InvalidMessageType(DecodeError):
    def __init__(self, value: int):
        super().__init__(f"invalid message type: 0x{value:02X}")
        self.value = value


class InvalidQoS(DecodeError):
    def __init__(self, value: int):
        super().__init__(f"invalid QoS: {value}")
        self.value = value


class InvalidReturnCode(DecodeError):
    def __init__(self, value: int):
        super().__init__(f"invalid return code: 0x{value:02X}")
        self.value = value


class MessageType(IntEnum):
    CONNECT = 0x01
    CONNACK = 0x02
    PUBLISH = 0x03
    PUBACK = 0x04
    SUBSCRIBE = 0x05
    SUBACK = 0x06
    PINGREQ = 0x07
    PINGRESP = 0x08
    DISCONNECT = 0x09


class QoS(IntEnum):
    AT_MOST_ONCE = 0
    AT_LEAST_ONCE = 1
    EXACTLY_ONCE = 2


class ConnectReturnCode(IntEnum):
    ACCEPTED = 0x00
    UNACCEPTABLE_PROTOCOL = 0x01
    IDENTIFIER_REJECTED = 0x02
    SERVER_UNAVAILABLE = 0x03
    BAD_CREDENTIALS = 0x04
    NOT_AUTHORIZED = 0x05


class SubAckReturnCode(IntEnum):
    SUCCESS_QOS0 = 0x00
    SUCCESS_QOS1 = 0x01
    SUCCESS_QOS2 = 0x02
    FAILURE = 0x80


# --- Field helpers ---

def read_u16(buf: bytes, offset: int) -> int:
    if len(buf) < offset + 2:
        raise BufferTooShort(offset + 2, len(buf))
    return struct.unpack_from(">H", buf, offset)[0]


def read_bytes(buf: bytes, offset: int) -> Tuple[bytes, int]:
    """Read a u16 length-prefixed byte field, returning it and the next offset."""
    length = read_u16(buf, offset)
    end = offset + 2 + length
    if len(buf) < end:
        raise BufferTooShort(end, len(buf))
    return bytes(buf[offset + 2:end]), end


def read_string(buf: bytes, offset: int) -> Tuple[str, int]:
    raw, end = read_bytes(buf, offset)
    try:
        return raw.decode("utf-8"), end
    except UnicodeDecodeError:
        raise DecodeError("invalid UTF-8 string")


def write_bytes(value: bytes) -> bytes:
    if len(value) > 0xFFFF:
        raise FieldTooLong("field length", len(value), 0xFFFF)
    return struct.pack(">H", len(value)) + value


def write_count(items: list, what: str) -> bytes:
    if len(items) > 0xFF:
        raise FieldTooLong(what, len(items), 0xFF)
    return bytes([len(items)])


def write_string(value: str) -> bytes:
    return write_bytes(value.encode("utf-8"))


def _qos(value: int) -> QoS:
    try:
        return QoS(value)
    except ValueError:
        raise InvalidQoS(value)


# --- Packets ---

@dataclass
class Connect:
    client_id: str
    keep_alive: int = 60
    clean_session: bool = True
    username: Optional[str] = None
    password: Optional[bytes] = None

    type = MessageType.CONNECT

    def flags(self) -> int:
        flags = 0
        if self.clean_session:
            flags |= 0x02
        if self.username is not None:
            flags |= 0x80
        if self.password is not None:
            flags |= 0x40
        return flags

    def encode(self) -> bytes:
        out = struct.pack(">BH", self.flags(), self.keep_alive) + write_string(self.client_id)
        if self.username is not None:
            out += write_string(self.username)
        if self.password is not None:
            out += write_bytes(self.password)
        return out

    @classmethod
    def decode(cls, buf: bytes) -> "Connect":
        if len(buf) < 3:
            raise BufferTooShort(3, len(buf))
        flags = buf[0]
        keep_alive = read_u16(buf, 1)
        client_id, offset = read_string(buf, 3)
        username = password = None
        if flags & 0x80:
            username, offset = read_string(buf, offset)
        if flags & 0x40:
            password, offset = read_bytes(buf, offset)
        return cls(client_id, keep_alive, bool(flags & 0x02), username, password)


@dataclass
class ConnAck:
    session_present: bool = False
    return_code: ConnectReturnCode = ConnectReturnCode.ACCEPTED

    type = MessageType.CONNACK

    def encode(self) -> bytes:
        return bytes([int(self.session_present), self.return_code])

    @classmethod
    def decode(cls, buf: bytes) -> "ConnAck":
        if len(buf) < 2:
            raise BufferTooShort(2, len(buf))
        try:
            code = ConnectReturnCode(buf[1])
        except ValueError:
            raise InvalidReturnCode(buf[1])
        return cls(buf[0] != 0, code)


@dataclass
class Publish:
    topic: str
    payload: bytes = b""
    qos: QoS = QoS.AT_MOST_ONCE
    retain: bool = False

    type = MessageType.PUBLISH

    def flags(self) -> int:
        return (int(self.qos) << 1) | (0x01 if self.retain else 0)

    def encode(self) -> bytes:
        return bytes([self.flags()]) + write_string(self.topic) + self.payload

    @classmethod
    def decode(cls, buf: bytes) -> "Publish":
        if not buf:
            raise BufferTooShort(1, 0)
        flags = buf[0]
        qos = _qos((flags >> 1) & 0x03)
        topic, offset = read_string(buf, 1)
        return cls(topic, bytes(buf[offset:]), qos, bool(flags & 0x01))


@dataclass
class SubscribeFilter:
    topic: str
    qos: QoS = QoS.AT_MOST_ONCE


@dataclass
class Subscribe:
    filters: List[SubscribeFilter] = field(default_factory=list)

    type = MessageType.SUBSCRIBE

    def encode(self) -> bytes:
        out = write_count(self.filters, "topic count")
        for f in self.filters:
            out += write_string(f.topic) + bytes([f.qos])
        return out

    @classmethod
    def decode(cls, buf: bytes) -> "Subscribe":
        if not buf:
            raise BufferTooShort(1, 0)
        filters = []
        offset = 1
        for _ in range(buf[0]):
            topic, offset = read_string(buf, offset)
            if len(buf) <= offset:
                raise BufferTooShort(offset + 1, len(buf))
            filters.append(SubscribeFilter(topic, _qos(buf[offset])))
            offset += 1
        return cls(filters)


@dataclass
class SubAck:
    return_codes: List[SubAckReturnCode] = field(default_factory=list)

    type = MessageType.SUBACK

    def encode(self) -> bytes:
        return write_count(self.return_codes, "return code count") + bytes(int(c) for c in self.return_codes)

    @classmethod
    def decode(cls, buf: bytes) -> "SubAck":
        if not buf:
            raise BufferTooShort(1, 0)
        count = buf[0]
        if len(buf) < 1 + count:
            raise BufferTooShort(1 + count, len(buf))
        codes = []
        for b in buf[1:1 + count]:
            try:
                codes.append(SubAckReturnCode(b))
            except ValueError:
                raise InvalidReturnCode(b)
        return cls(codes)


class _Empty:
    """Mixin for packets that carry no payload."""

    def encode(self) -> bytes:
        return b""

    @classmethod
    def decode(cls, buf: bytes):
        return cls()


@dataclass
class PubAck(_Empty):
    type = MessageType.PUBACK


@dataclass
class PingReq(_Empty):
    type = MessageType.PINGREQ


@dataclass
class PingResp(_Empty):
    type = MessageType.PINGRESP


@dataclass
class Disconnect(_Empty):
    type = MessageType.DISCONNECT


Packet = Union[Connect, ConnAck, Publish, PubAck, Subscribe, SubAck, PingReq, PingResp, Disconnect]

PACKET_CLASSES = {
    MessageType.CONNECT: Connect,
    MessageType.CONNACK: ConnAck,
    MessageType.PUBLISH: Publish,
    MessageType.PUBACK: PubAck,
    MessageType.SUBSCRIBE: Subscribe,
    MessageType.SUBACK: SubAck,
    MessageType.PINGREQ: PingReq,
    MessageType.PINGRESP: PingResp,
    MessageType.DISCONNECT: Disconnect,
}


@dataclass
class UdpFrame:
    """A uqtt packet with its message id, as carried in one datagram."""

    msg_id: int
    packet: Packet

    def encode(self) -> bytes:
        """Serialize the frame.

        Raises:
            PayloadTooLarge: If the frame does not fit the one-byte length field.
        """
        payload = self.packet.encode()
        total = HEADER_LEN + len(payload)
        if total > MAX_FRAME_LEN:
            raise PayloadTooLarge(total)
        return struct.pack(">BBH", self.packet.type, total, self.msg_id & 0xFFFF) + payload

    @classmethod
    def decode(cls, buf: bytes) -> "UdpFrame":
        """Parse a datagram holding exactly one frame.

        Raises:
            DecodeError: If the type is unknown, the declared length does not
                match the datagram, or the payload is malformed for its type.
        """
        if len(buf) < HEADER_LEN:
            raise BufferTooShort(HEADER_LEN, len(buf))
        try:
            msg_type = MessageType(buf[0])
        except ValueError:
            raise InvalidMessageType(buf[0])
        length = buf[1]
        if length < HEADER_LEN:
            raise DecodeError(f"declared length {length} is shorter than the header")
        if len(buf) < length:
            raise BufferTooShort(length, len(buf))
        if len(buf) > length:
            raise DecodeError(f"{len(buf) - length} trailing bytes after frame")
        msg_id = struct.unpack_from(">H", buf, 2)[0]
        packet = PACKET_CLASSES[msg_type].decode(bytes(buf[HEADER_LEN:length]))
        return cls(msg_id, packet)
