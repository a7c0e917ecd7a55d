import io
import shutil
import threading
import time
import uuid
from pathlib import Path

import numpy as np
import pytest
import zmq
from PIL import Image as PILImage

from zmq_server import ZMQServer


def _wait_for_server(srv: ZMQServer, timeout: float = 2.0) -> bool:
    """Ping the server until it responds or timeout expires."""
    ctx = zmq.Context()
    sock = ctx.socket(zmq.REQ)
    sock.setsockopt(zmq.LINGER, 0)
    sock.setsockopt(zmq.RCVTIMEO, 500)
    sock.connect(f"tcp://127.0.0.1:{srv.ping_port}")
    deadline = time.monotonic() + timeout
    alive = False
    while time.monotonic() < deadline:
        try:
            sock.send_json({"cmd": "ping", "id": "health", "_token": srv.token})
            resp = sock.recv_json()
            if resp.get("status") == "alive":
                alive = True
                break
        except zmq.Again:
            # REQ socket is stuck after a missed reply; start over
            sock.close()
            sock = ctx.socket(zmq.REQ)
            sock.setsockopt(zmq.LINGER, 0)
            sock.setsockopt(zmq.RCVTIMEO, 500)
            sock.connect(f"tcp://127.0.0.1:{srv.ping_port}")
            time.sleep(0.05)
    sock.close()
    ctx.term()
    return alive


@pytest.fixture(scope="session")
def _zmq_server_session():
    """Start ONE ZMQ server per test session."""
    srv = ZMQServer()
    thread = threading.Thread(target=srv.run, daemon=True)
    thread.start()
    if not _wait_for_server(srv):
        pytest.skip("ZMQ server failed to start within 2s")
    yield srv
    srv.running = False
    # Wait for poller timeout cycle to complete
    time.sleep(0.6)


@pytest.fixture
def zmq_server(_zmq_server_session):
    """Function-scoped wrapper: resets state between tests, shares session server."""
    _zmq_server_session.reset_state()
    _zmq_server_session.running = True
    yield _zmq_server_session


class AuthenticatedZmqClient:
    """Wraps a ZMQ REQ socket and auto-injects the auth token."""

    def __init__(self, sock: zmq.Socket, token: str):
        self._sock = sock
        self._token = token

    def send_json(self, msg: dict) -> None:
        msg["_token"] = self._token
        self._sock.send_json(msg)

    def recv_json(self) -> dict:
        return self._sock.recv_json()

    def request(self, msg: dict) -> dict:
        self.send_json(msg)
        return self.recv_json()

    def close(self) -> None:
        self._sock.close()


@pytest.fixture
def zmq_client(zmq_server):
    """REQ socket connected to the test server (auto-injects auth token)."""
    ctx = zmq.Context()
    sock = ctx.socket(zmq.REQ)
    sock.setsockopt(zmq.RCVTIMEO, 10_000)
    sock.connect(f"tcp://127.0.0.1:{zmq_server.port}")
    client = AuthenticatedZmqClient(sock, zmq_server.token)
    yield client
    sock.close()
    ctx.term()


@pytest.fixture
def home_tmp_path():
    """tmp_path equivalent under ~/ for tests that go through validate_upload."""
    base = Path.home() / ".cache" / "pngsort" / "test-tmp"
    base.mkdir(parents=True, exist_ok=True)
    d = base / f"test_{uuid.uuid4().hex[:8]}"
    d.mkdir()
    yield d
    shutil.rmtree(d, ignore_errors=True)


def make_png(arr: np.ndarray) -> bytes:
    """Encode an (H, W) or (H, W, C) uint8 array as PNG bytes."""
    buf = io.BytesIO()
    PILImage.fromarray(arr).save(buf, format="PNG")
    return buf.getvalue()


def random_pixels(h: int = 16, w: int = 24, c: int = 3, seed: int = 42) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, (h, w, c), dtype=np.uint8)


@pytest.fixture
def rgb_png() -> bytes:
    return make_png(random_pixels(c=3))


@pytest.fixture
def rgba_png() -> bytes:
    return make_png(random_pixels(c=4))
