"""
Command line entry point.

``udd <host:port> <payload>`` sends one datagram and prints replies for a
short while; without a payload it starts a line-oriented prompt, and with
``--tui`` the full-screen interface.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, TextIO

from .core import PacketEvent, SessionConfig, UdpSession, parse_address
from .errors import EncodeError
from .payload import Mode

logger = logging.getLogger("udd.cli")

REPL_HELP = """Commands:
  text <message>     Send text
  hex <bytes>        Send hex (e.g., hex deadbeef)
  mqtt <command>     Send a uqtt command (e.g., mqtt connect id1 keepalive=30)
  file <path>        Send file contents
  mode <name>        Set the mode for other lines (auto, text, hex, mqtt)
  quit               Exit
Any other line is sent using the current mode.
"""

REPL_COMMANDS = {"text": Mode.TEXT, "hex": Mode.HEX, "mqtt": Mode.PROTOCOL}


def _address(value: str):
    try:
        return parse_address(value, default_host="0.0.0.0")
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _target(value: str):
    try:
        return parse_address(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _mode(value: str) -> Mode:
    try:
        return Mode.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="udd", description="Interactive uqtt/UDP debugger")
    parser.add_argument("target", type=_target, help="peer address as host:port")
    parser.add_argument("payload", nargs="?", help="send this payload once and exit")
    parser.add_argument("-m", "--mode", type=_mode, default=Mode.AUTO,
                        help="input mode: auto, text, hex or mqtt (default: auto)")
    parser.add_argument("-b", "--bind", type=_address, default=("0.0.0.0", 0),
                        help="local address:port to bind (default: 0.0.0.0:0)")
    parser.add_argument("--tui", action="store_true", help="start the terminal UI")
    parser.add_argument("-w", "--wait", type=float, default=1.0,
                        help="seconds to wait for replies after a single send (default: 1.0)")
    parser.add_argument("-v", "--verbose", action="count", default=0)
    return parser


def config_from_args(args: argparse.Namespace) -> SessionConfig:
    (target_host, target_port), (bind_host, bind_port) = args.target, args.bind
    return SessionConfig(target_host, target_port, bind_host, bind_port, args.mode)


def format_sent(event: PacketEvent) -> str:
    return f"→ [{Mode(event.mode).label}] {event.size} bytes: {event.semantic}"


def format_received(event: PacketEvent) -> str:
    return f"← {event.size} bytes: {event.semantic}"


def format_error(error: EncodeError, raw_input: str) -> str:
    return f"✗ {error} (input: {raw_input!r})"


def print_received(event: PacketEvent):
    print(format_received(event), flush=True)


async def run_once(config: SessionConfig, payload: str, wait: float = 1.0) -> int:
    session = UdpSession(config, on_receive=print_received)
    await session.open()
    try:
        try:
            event = session.send(payload)
        except EncodeError as e:
            print(format_error(e, payload), file=sys.stderr)
            return 2
        print(format_sent(event), flush=True)
        await asyncio.sleep(wait)
    finally:
        await session.close()
    return 0


def handle_line(session: UdpSession, line: str) -> bool:
    """Run one prompt line. Returns False when the user asked to quit."""
    cmd, _, arg = line.partition(" ")
    cmd = cmd.lower()
    if cmd in ("quit", "exit"):
        return False
    if cmd == "mode":
        try:
            session.config.mode = Mode.parse(arg)
            print(f"Mode set to {session.config.mode.value}")
        except ValueError as e:
            print(f"✗ {e}", file=sys.stderr)
        return True
    if cmd == "file":
        try:
            data = Path(arg.strip()).read_bytes()
        except OSError as e:
            print(f"✗ File error: {e}", file=sys.stderr)
            return True
        event = session.send_bytes(data)
        print(f"Sent {event.size} bytes from file: {event.semantic}")
        return True

    mode = REPL_COMMANDS.get(cmd)
    raw_input = arg if mode is not None else line
    try:
        event = session.send(raw_input, mode)
    except EncodeError as e:
        print(format_error(e, raw_input), file=sys.stderr)
        return True
    print(format_sent(event))
    return True


async def run_repl(config: SessionConfig, stdin: Optional[TextIO] = None) -> int:
    stdin = stdin or sys.stdin
    session = UdpSession(config, on_receive=print_received)
    await session.open()
    local = session.local_address
    print(f"UDP sender ready {local[0]}:{local[1]} → {config.target}")
    print(REPL_HELP)
    loop = asyncio.get_running_loop()
    try:
        while True:
            print("> ", end="", flush=True)
            line = await loop.run_in_executor(None, stdin.readline)
            if not line:
                break
            line = line.strip()
            if line and not handle_line(session, line):
                break
    finally:
        await session.close()
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv if argv is not None else sys.argv[1:])
    level = {0: logging.WARNING, 1: logging.INFO}.get(args.verbose, logging.DEBUG)
    logging.basicConfig(level=level, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    config = config_from_args(args)

    try:
        if args.tui:
            from .tui import run_tui
            return asyncio.run(run_tui(config))
        if args.payload is not None:
            return asyncio.run(run_once(config, args.payload, args.wait))
        return asyncio.run(run_repl(config))
    except OSError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
