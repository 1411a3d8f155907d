"""
Payload encoding and decoding.

``encode`` turns one line of user input into the bytes of a datagram and
``decode`` turns a received datagram into a display string. Both are pure:
no I/O and no shared state, so they are safe to call from anywhere.
"""

import string
from enum import Enum
from typing import Optional

from .errors import EncodeError, InvalidHex, InvalidProtocolCommand
from .protocols import UqttParser

HEX_DIGITS = frozenset(string.hexdigits)
PRINTABLE = frozenset(range(0x20, 0x7F)) | {0x09, 0x0A, 0x0D}

ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\"}
REVERSE_ESCAPES = {v: "\\" + k for k, v in ESCAPES.items()}


class Mode(str, Enum):
    """How a line of user input is interpreted before sending."""

    AUTO = "auto"
    TEXT = "text"
    HEX = "hex"
    PROTOCOL = "mqtt"

    @property
    def label(self) -> str:
        return {"auto": "AUTO", "text": "TXT", "hex": "HEX", "mqtt": "MQTT"}[self.value]

    @classmethod
    def _missing_(cls, value):
        if not isinstance(value, str):
            return None
        name = value.strip().lower()
        if name in ("uqtt", "protocol"):
            return cls.PROTOCOL
        return next((m for m in cls if m.value == name), None)

    @classmethod
    def parse(cls, name: str) -> "Mode":
        """Looks a mode up by its CLI name (``uqtt`` and ``protocol`` alias ``mqtt``)."""
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"unknown mode '{name.strip()}', expected one of: auto, text, hex, mqtt")


def parse_hex(raw: str) -> bytes:
    """Decodes a hex string such as ``"de ad BE EF"``.

    Raises:
        InvalidHex: On a non-hex character or an odd digit count.
    """
    digits = "".join(raw.split())
    bad = next((c for c in digits if c not in HEX_DIGITS), None)
    if bad is not None:
        raise InvalidHex(f"invalid hex character {bad!r}", raw)
    if len(digits) % 2:
        raise InvalidHex("odd number of hex digits", raw)
    return bytes.fromhex(digits)


def parse_text_with_escapes(raw: str) -> bytes:
    """Encodes text as UTF-8 after expanding ``\\n``, ``\\t``, ``\\r`` and ``\\\\``.

    Any other backslash sequence is kept as written.
    """
    out = []
    i = 0
    while i < len(raw):
        c = raw[i]
        if c == "\\" and i + 1 < len(raw) and raw[i + 1] in ESCAPES:
            out.append(ESCAPES[raw[i + 1]])
            i += 2
            continue
        out.append(c)
        i += 1
    return "".join(out).encode("utf-8", errors="surrogatepass")


def escape_text(text: str) -> str:
    """Inverse of the escape expansion in :func:`parse_text_with_escapes`."""
    return "".join(REVERSE_ESCAPES.get(c, c) for c in text)


def encode(raw_input: str, mode: Mode = Mode.AUTO, msg_id: int = 1) -> bytes:
    """Produces the datagram bytes for one line of input.

    In ``AUTO`` mode the input is tried as a uqtt command, then as hex, and
    finally sent as text, which never fails.

    Args:
        raw_input: The line typed by the user.
        mode: Interpretation to apply.
        msg_id: Message id for uqtt frames.

    Raises:
        InvalidHex: ``HEX`` mode and the input is not valid hex.
        InvalidProtocolCommand: ``PROTOCOL`` mode and the input is not a uqtt command.
    """
    mode = Mode(mode)
    if mode is Mode.TEXT:
        return parse_text_with_escapes(raw_input)
    if mode is Mode.HEX:
        return parse_hex(raw_input)
    if mode is Mode.PROTOCOL:
        try:
            return UqttParser.encode(raw_input, msg_id)
        except InvalidProtocolCommand as e:
            e.raw_input = raw_input
            raise

    try:
        return UqttParser.encode(raw_input, msg_id)
    except EncodeError:
        pass
    try:
        return parse_hex(raw_input)
    except EncodeError:
        pass
    return parse_text_with_escapes(raw_input)


def hexdump(data: bytes) -> str:
    return f"hex={data.hex()}"


def as_text(data: bytes) -> Optional[str]:
    """Returns the escaped text form of ``data`` if every byte is printable ASCII."""
    if not all(b in PRINTABLE for b in data):
        return None
    return escape_text(data.decode("ascii"))


def fallback(data: bytes) -> str:
    if not data:
        return "(empty)"
    text = as_text(data)
    if text is None:
        return hexdump(data)
    return f'{hexdump(data)} text="{text}"'


def decode(data: bytes) -> str:
    """Renders a received datagram for display.

    A valid uqtt frame is described field by field; anything else is shown as
    a hex dump, with a text rendering alongside when the bytes are printable.
    Never raises.
    """
    data = bytes(data)
    described = UqttParser.describe(data)
    if described is not None:
        return described
    return fallback(data)


def render(data: bytes, mode: Mode = Mode.AUTO) -> str:
    """Renders a datagram the way the given input mode would read it."""
    data = bytes(data)
    mode = Mode(mode)
    if mode is Mode.HEX:
        return hexdump(data) if data else "(empty)"
    if mode is Mode.TEXT:
        text = as_text(data)
        return f'text="{text}"' if text is not None else fallback(data)
    if mode is Mode.PROTOCOL:
        return UqttParser.describe(data) or fallback(data)
    return decode(data)
