"""Errors raised while turning user input into datagram bytes."""

from typing import Optional


class EncodeError(ValueError):
    """User input could not be encoded in the requested mode."""

    def __init__(self, message: str, raw_input: Optional[str] = None):
        super().__init__(message)
        self.raw_input = raw_input


class InvalidHex(EncodeError):
    """Input is not an even-length run of hex digits."""


class InvalidProtocolCommand(EncodeError):
    """Input is not a recognized uqtt command line.

    ``token`` holds the keyword or parameter that was rejected.
    """

    def __init__(self, message: str, token: str = "", raw_input: Optional[str] = None):
        super().__init__(message, raw_input)
        self.token = token
