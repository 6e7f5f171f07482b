"""The REPL environment: lifecycle, evaluation and code loading.

Example:
    with ReplEnvironment(BridgeConfig(port=9001)) as env:
        # once a browser client has connected
        env.evaluate("1 + 1")
        env.load(["my.app"], "out/my/app.js")
"""

from __future__ import annotations

import logging
import sys
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, TextIO

from weasel_repl.config import BridgeConfig
from weasel_repl.correlator import Correlator
from weasel_repl.deps import DependencyIndex, DependencyResolver
from weasel_repl.dispatcher import MessageDispatcher
from weasel_repl.errors import EnvironmentStateError, SingleFlightError
from weasel_repl.payload import make_encoder
from weasel_repl.transport import Transport, WebSocketTransport

logger = logging.getLogger(__name__)

# Namespaces making up the REPL client itself.
RUNTIME_UNITS = ("weasel.repl",)


class EnvironmentState(str, Enum):
    """Lifecycle of an environment. TORN_DOWN is terminal."""

    UNINITIALIZED = "uninitialized"
    SET_UP = "set_up"
    TORN_DOWN = "torn_down"


class LoadTracker:
    """Unit names the client already has."""

    def __init__(self, initial: Iterable[str] = ()):
        self._lock = threading.Lock()
        self._loaded: set[str] = set(initial)

    def missing(self, names: Iterable[str]) -> set[str]:
        """Names not loaded yet."""
        with self._lock:
            return set(names) - self._loaded

    def add(self, names: Iterable[str]) -> None:
        with self._lock:
            self._loaded.update(names)

    def reset(self, names: Iterable[str] = ()) -> None:
        """Replace the contents with ``names``."""
        with self._lock:
            self._loaded = set(names)

    def snapshot(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._loaded)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._loaded

    def __len__(self) -> int:
        with self._lock:
            return len(self._loaded)


class ReplEnvironment:
    """Evaluates JavaScript in a browser connected over a WebSocket.

    One evaluation runs at a time: ``evaluate`` blocks until the client
    replies. Code is delivered inline or through staged files, depending on
    ``config.delivery_strategy``, fixed for the lifetime of the instance.
    """

    def __init__(
        self,
        config: BridgeConfig | None = None,
        *,
        transport: Transport | None = None,
        resolver: DependencyResolver | None = None,
        output_sink: TextIO | None = None,
    ):
        self.config = config or BridgeConfig()
        self.transport = transport or WebSocketTransport()
        self.resolver = resolver or DependencyIndex()
        self.encoder = make_encoder(self.config.delivery_strategy, self.config.staging_dir)
        self.correlator = Correlator(self.transport, timeout=self.config.eval_timeout)
        self.dispatcher = MessageDispatcher(self)
        self.state = EnvironmentState.UNINITIALIZED

        self._configured_sink = output_sink
        self.output_sink: TextIO | None = None

        runtime_deps = self.resolver.transitive_deps(
            RUNTIME_UNITS,
            {"output_dir": self.config.output_dir, "source_root": self.config.source_root},
        )
        self.preloaded_units: frozenset[str] = frozenset(
            runtime_deps | set(self.config.preloaded_units)
        )
        self.loaded = LoadTracker(self.preloaded_units)

    @property
    def loaded_units(self) -> frozenset[str]:
        return self.loaded.snapshot()

    def _require_state(self, expected: EnvironmentState, action: str) -> None:
        if self.state != expected:
            raise EnvironmentStateError(
                f"Cannot {action}: environment is {self.state.value}, expected {expected.value}"
            )

    def _status(self, line: str, out: TextIO | None = None) -> None:
        print(line, file=out or self.output_sink or sys.stdout, flush=True)

    def setup(self) -> None:
        """Start listening for a client."""
        self._require_state(EnvironmentState.UNINITIALIZED, "set up")

        self.output_sink = self._configured_sink or sys.stdout
        self.resolver.analyze_source(self.config.source_root)
        self.transport.on_disconnect = self._on_disconnect
        self.transport.start(self.dispatcher.on_message, self.config.host, self.config.port)
        self.state = EnvironmentState.SET_UP

        port = getattr(self.transport, "port", None) or self.config.port
        self._status(f"<< started Weasel server on ws://{self.config.host}:{port} >>")

    def evaluate(self, code: str) -> Any:
        """Evaluate JavaScript in the client and return its result.

        Raises:
            RemoteEvaluationError: If the client disconnects before replying.
            SingleFlightError: If called while another evaluation is running.
        """
        self._require_state(EnvironmentState.SET_UP, "evaluate")
        if self.correlator.pending is not None:
            raise SingleFlightError()
        request = self.encoder.encode_request(code)
        try:
            return self.correlator.issue(request)
        finally:
            self.encoder.release(request)

    def load(self, unit_names: Iterable[str], url: str | Path) -> bool:
        """Send the code at ``url`` unless all of ``unit_names`` are loaded.

        Returns True if code was sent.
        """
        self._require_state(EnvironmentState.SET_UP, "load")
        names = list(unit_names)
        missing = self.loaded.missing(names)
        if not missing:
            logger.debug("Already loaded: %s", ", ".join(sorted(names)))
            return False

        logger.debug("Loading %s from %s", ", ".join(sorted(missing)), url)
        self.evaluate(self.resolver.read_source(url))
        self.loaded.add(names)
        return True

    def tear_down(self) -> None:
        """Stop the server and forget everything loaded."""
        self._require_state(EnvironmentState.SET_UP, "tear down")

        out = self.output_sink
        self.output_sink = None
        self.loaded.reset()
        try:
            self.transport.stop()
        finally:
            self.transport.on_disconnect = None
            self.encoder.cleanup()
            self.state = EnvironmentState.TORN_DOWN
        self._status("<< stopped server >>", out)

    def _on_disconnect(self) -> None:
        self.correlator.fail_pending("Client disconnected before replying")

    def __enter__(self) -> ReplEnvironment:
        self.setup()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self.state == EnvironmentState.SET_UP:
            self.tear_down()
