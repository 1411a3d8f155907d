import socketserver
import threading
import time

import pytest


@pytest.fixture(scope="session")
def echo_server():
    """Starts a threaded UDP echo server and yields its port."""

    class EchoHandler(socketserver.BaseRequestHandler):
        def handle(self):
            data, sock = self.request
            sock.sendto(data, self.client_address)

    server = socketserver.ThreadingUDPServer(('127.0.0.1', 0), EchoHandler)
    server.daemon_threads = True
    port = server.server_address[1]

    thread = threading.Thread(target=server.serve_forever)
    thread.daemon = True
    thread.start()

    # Wait a bit for server to start
    time.sleep(0.2)

    yield port

    server.shutdown()
    server.server_close()


@pytest.fixture(autouse=True)
async def cleanup_engine():
    from udd.core import engine, state_manager
    # Run before test
    yield
    # Run after test
    await engine.shutdown()
    state_manager.packet_log.clear()
    state_manager.subscribers.clear()


@pytest.fixture
def wait_for_rx():
    """Returns a coroutine function that waits for received datagrams to be logged."""
    import asyncio
    from udd.core import state_manager

    async def wait(count: int = 1, timeout: float = 2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            received = [e for e in state_manager.packet_log if e.direction == "RX"]
            if len(received) >= count:
                return received
            if loop.time() > deadline:
                raise AssertionError(f"expected {count} RX datagrams, got {len(received)}")
            await asyncio.sleep(0.01)

    return wait
