"""
Terminal UI.

A scrolling log of sent and received datagrams above a single input line.
Keys: Tab cycles the input mode, Enter sends, Esc quits, PgUp/PgDn scroll,
Up/Down select a logged datagram and Ctrl-R sends its bytes again.
"""

import asyncio
import curses
from dataclasses import dataclass
from typing import List, Optional, Union

from .core import PacketEvent, SessionConfig, UdpSession
from .errors import EncodeError
from .payload import Mode

CTRL_R = "\x12"
ESCAPE = "\x1b"

MODE_CYCLE = {
    Mode.AUTO: Mode.PROTOCOL,
    Mode.PROTOCOL: Mode.TEXT,
    Mode.TEXT: Mode.HEX,
    Mode.HEX: Mode.AUTO,
}

# style name -> (curses color, bold)
STYLES = {
    "info": (curses.COLOR_WHITE, False),
    "sent": (curses.COLOR_CYAN, False),
    "received": (curses.COLOR_GREEN, False),
    "error": (curses.COLOR_RED, False),
    Mode.AUTO.value: (curses.COLOR_BLUE, True),
    Mode.TEXT.value: (curses.COLOR_GREEN, True),
    Mode.HEX.value: (curses.COLOR_MAGENTA, True),
    Mode.PROTOCOL.value: (curses.COLOR_YELLOW, True),
}


@dataclass
class LogEntry:
    display: str
    style: str
    event_id: Optional[str] = None  # set for datagrams that can be replayed


class TuiApp:
    def __init__(self, session: UdpSession):
        self.session = session
        self.input = ""
        self.mode = session.config.mode
        self.log: List[LogEntry] = [
            LogEntry("Ready. Tab=mode, Enter=send, Esc=quit, Up/Down=select, Ctrl-R=replay", "info")
        ]
        self.scroll_offset = 0
        self.visible_rows = 20
        self.selected: Optional[int] = None
        self.running = True

    def log_msg(self, display: str, style: str, event_id: Optional[str] = None):
        self.log.append(LogEntry(display, style, event_id))
        if len(self.log) > self.visible_rows:
            self.scroll_offset = len(self.log) - self.visible_rows

    def log_error(self, msg: str):
        self.log_msg(f"✗ {msg}", "error")

    def log_sent(self, event: PacketEvent, prefix: str = "→"):
        self.log_msg(f"{prefix} [{Mode(event.mode).label}] {event.size} bytes: {event.semantic}",
                     "sent", event.id)

    def on_datagram(self, event: PacketEvent):
        self.log_msg(f"← {event.size} bytes: {event.semantic}", "received", event.id)

    def submit(self):
        raw_input, self.input = self.input, ""
        if not raw_input:
            return
        try:
            event = self.session.send(raw_input, self.mode)
        except EncodeError as e:
            self.log_error(f"{e} (input: {raw_input})")
            return
        except (OSError, RuntimeError) as e:
            self.log_error(f"Send failed: {e}")
            return
        self.log_sent(event)

    def cycle_mode(self):
        self.mode = MODE_CYCLE[self.mode]

    def scroll(self, delta: int):
        top = max(len(self.log) - self.visible_rows, 0)
        self.scroll_offset = min(max(self.scroll_offset + delta, 0), top)

    def move_selection(self, delta: int):
        replayable = [i for i, e in enumerate(self.log) if e.event_id is not None]
        if not replayable:
            return
        if self.selected not in replayable:
            self.selected = replayable[-1] if delta < 0 else replayable[0]
        else:
            pos = replayable.index(self.selected) + delta
            self.selected = replayable[min(max(pos, 0), len(replayable) - 1)]
        if self.selected < self.scroll_offset:
            self.scroll_offset = self.selected
        elif self.selected >= self.scroll_offset + self.visible_rows:
            self.scroll_offset = self.selected - self.visible_rows + 1

    def replay_selected(self):
        if self.selected is None:
            self.log_error("Nothing selected, use Up/Down to pick a datagram")
            return
        try:
            event = self.session.replay(self.log[self.selected].event_id)
        except (ValueError, OSError, RuntimeError) as e:
            self.log_error(f"Replay failed: {e}")
            return
        self.log_sent(event, prefix="↻")

    def handle_key(self, key: Union[int, str]):
        if key in (ESCAPE, 27):
            self.running = False
        elif key == "\t":
            self.cycle_mode()
        elif key in ("\n", "\r", curses.KEY_ENTER):
            self.submit()
        elif key in (curses.KEY_BACKSPACE, "\x7f", "\b"):
            self.input = self.input[:-1]
        elif key == CTRL_R:
            self.replay_selected()
        elif key == curses.KEY_UP:
            self.move_selection(-1)
        elif key == curses.KEY_DOWN:
            self.move_selection(1)
        elif key == curses.KEY_PPAGE:
            self.scroll(-self.visible_rows)
        elif key == curses.KEY_NPAGE:
            self.scroll(self.visible_rows)
        elif isinstance(key, str) and key.isprintable():
            self.input += key

    def draw(self, stdscr, colors: dict):
        stdscr.erase()
        height, width = stdscr.getmaxyx()
        self.visible_rows = max(height - 3, 1)

        for row, index in enumerate(range(self.scroll_offset, min(len(self.log), self.scroll_offset + self.visible_rows))):
            entry = self.log[index]
            attr = colors.get(entry.style, 0)
            if index == self.selected:
                attr |= curses.A_REVERSE
            _addstr(stdscr, row, 0, entry.display[:width - 1], attr)

        target = self.session.config.target
        _addstr(stdscr, height - 3, 0, "─" * (width - 1), curses.A_DIM)
        header = f" Target: {target} │ Mode: "
        _addstr(stdscr, height - 2, 0, header)
        _addstr(stdscr, height - 2, len(header), f"[{self.mode.label}]", colors.get(self.mode.value, 0))
        _addstr(stdscr, height - 2, len(header) + len(self.mode.label) + 2, " (tab to cycle)", curses.A_DIM)
        prompt = f"> {self.input}"
        _addstr(stdscr, height - 1, 0, prompt[-(width - 1):])
        stdscr.move(height - 1, min(len(prompt), width - 1))
        stdscr.refresh()


def _addstr(stdscr, y: int, x: int, text: str, attr: int = 0):
    try:
        stdscr.addstr(y, x, text, attr)
    except curses.error:
        pass  # Writing to the last cell or off-screen


def _init_colors() -> dict:
    colors = {}
    if not curses.has_colors():
        return colors
    curses.start_color()
    curses.use_default_colors()
    for pair, (name, (fg, bold)) in enumerate(STYLES.items(), start=1):
        curses.init_pair(pair, fg, -1)
        colors[name] = curses.color_pair(pair) | (curses.A_BOLD if bold else 0)
    return colors


def _read_key(stdscr) -> Optional[Union[int, str]]:
    try:
        return stdscr.get_wch()
    except curses.error:
        return None


async def run_tui(config: SessionConfig) -> int:
    session = UdpSession(config)
    app = TuiApp(session)
    session.on_receive = app.on_datagram
    await session.open()

    stdscr = curses.initscr()
    try:
        curses.noecho()
        curses.cbreak()
        curses.set_escdelay(25)
        stdscr.keypad(True)
        stdscr.nodelay(True)
        colors = _init_colors()
        while app.running:
            app.draw(stdscr, colors)
            key = _read_key(stdscr)
            if key is None:
                await asyncio.sleep(0.05)
                continue
            app.handle_key(key)
    finally:
        stdscr.keypad(False)
        curses.nocbreak()
        curses.echo()
        curses.endwin()
        await session.close()
    return 0
