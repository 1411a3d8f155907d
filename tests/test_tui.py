import curses

import pytest

from udd.core import SessionConfig, UdpSession
from udd.payload import Mode
from udd.tui import CTRL_R, ESCAPE, TuiApp


def type_line(app: TuiApp, text: str):
    for ch in text:
        app.handle_key(ch)
    app.handle_key("\n")


@pytest.fixture
async def tui(echo_server):
    session = UdpSession(SessionConfig("127.0.0.1", echo_server))
    app = TuiApp(session)
    session.on_receive = app.on_datagram
    await session.open()
    yield app
    await session.close()


@pytest.mark.asyncio
async def test_send_and_receive(tui, wait_for_rx):
    type_line(tui, "ping")
    assert tui.input == ""
    assert tui.log[-1].display == "→ [AUTO] 4 bytes: #1 PINGREQ"
    assert tui.log[-1].event_id is not None

    await wait_for_rx()
    assert tui.log[-1].display == "← 4 bytes: #1 PINGREQ"
    assert tui.log[-1].style == "received"


@pytest.mark.asyncio
async def test_cycle_mode_and_errors(tui):
    assert tui.mode is Mode.AUTO
    tui.handle_key("\t")
    assert tui.mode is Mode.PROTOCOL
    type_line(tui, "bogus")
    assert tui.log[-1].style == "error"
    assert "unknown command: bogus" in tui.log[-1].display

    tui.handle_key("\t")
    tui.handle_key("\t")
    assert tui.mode is Mode.HEX
    type_line(tui, "ab cd")
    assert tui.log[-1].display == "→ [HEX] 2 bytes: hex=abcd"

    tui.handle_key("\t")
    assert tui.mode is Mode.AUTO


@pytest.mark.asyncio
async def test_editing_keys(tui):
    for key in "abc":
        tui.handle_key(key)
    tui.handle_key(curses.KEY_BACKSPACE)
    tui.handle_key("\x7f")
    assert tui.input == "a"
    count = len(tui.log)
    tui.handle_key("\n")
    tui.handle_key("\n")  # empty input sends nothing
    assert len(tui.log) == count + 1
    tui.handle_key(ESCAPE)
    assert not tui.running


@pytest.mark.asyncio
async def test_select_and_replay(tui, wait_for_rx):
    tui.handle_key(CTRL_R)
    assert "Nothing selected" in tui.log[-1].display

    type_line(tui, "deadbeef")
    await wait_for_rx()
    tui.handle_key(curses.KEY_UP)
    assert tui.log[tui.selected].style == "received"
    tui.handle_key(curses.KEY_UP)
    assert tui.log[tui.selected].style == "sent"

    tui.handle_key(CTRL_R)
    assert tui.log[-1].display == "↻ [AUTO] 4 bytes: hex=deadbeef"
    await wait_for_rx(2)


@pytest.mark.asyncio
async def test_scroll_is_clamped(tui):
    tui.visible_rows = 5
    for i in range(20):
        tui.log_msg(f"line {i}", "info")
    assert tui.scroll_offset == len(tui.log) - 5
    tui.handle_key(curses.KEY_PPAGE)
    assert tui.scroll_offset == len(tui.log) - 10
    tui.scroll(-100)
    assert tui.scroll_offset == 0
    tui.handle_key(curses.KEY_NPAGE)
    tui.scroll(100)
    assert tui.scroll_offset == len(tui.log) - 5
