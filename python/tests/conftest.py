"""
Pytest configuration and shared fixtures for weasel_repl tests.
"""

import io
import threading

import pytest

from weasel_repl.config import BridgeConfig
from weasel_repl.deps import DependencyIndex
from weasel_repl.environment import ReplEnvironment
from weasel_repl.errors import RemoteEvaluationError


class FakeTransport:
    """In-memory transport.

    Sent frames are recorded. A ``responder`` callback, if set, is invoked
    for every frame sent from a caller thread and may inject replies through
    ``receive``, which runs the handler on a separate thread as the real
    transport does.
    """

    def __init__(self):
        self.on_disconnect = None
        self.handler = None
        self.sent = []
        self.started = False
        self.stopped = False
        self.connected = True
        self.responder = None
        self.port = None

    def start(self, handler, host, port):
        self.handler = handler
        self.started = True
        self.port = port

    def stop(self):
        self.stopped = True
        if self.on_disconnect is not None:
            self.on_disconnect()

    def send(self, message):
        if not self.connected:
            raise RemoteEvaluationError("No client connected")
        self.sent.append(message)
        if self.responder is not None:
            self.responder(message)

    def receive(self, raw):
        """Deliver an inbound frame on a separate thread and wait for it."""
        thread = threading.Thread(target=self.handler, args=(raw,))
        thread.start()
        thread.join()

    def receive_later(self, raw):
        """Deliver an inbound frame on a separate thread without waiting."""
        thread = threading.Thread(target=self.handler, args=(raw,))
        thread.start()
        return thread

    def disconnect(self):
        self.connected = False
        if self.on_disconnect is not None:
            self.on_disconnect()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def sink():
    return io.StringIO()


@pytest.fixture
def config(tmp_path):
    return BridgeConfig(
        port=0,
        source_root=str(tmp_path / "src"),
        output_dir=str(tmp_path / "out"),
        staging_dir=str(tmp_path),
    )


@pytest.fixture
def env(config, transport, sink):
    environment = ReplEnvironment(
        config, transport=transport, resolver=DependencyIndex(), output_sink=sink
    )
    environment.setup()
    yield environment
    if environment.state.value == "set_up":
        environment.tear_down()
