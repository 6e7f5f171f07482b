"""Routing of inbound frames to their handlers.

The dispatcher runs on the transport's delivery thread. It must never wait
on the correlator's reply slot: the slot is only ever filled from here.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Callable

from weasel_repl.errors import ProtocolError, RemoteEvaluationError
from weasel_repl.payload import namespace_directive
from weasel_repl.protocol import (
    EvalRequest,
    OpCode,
    PrintMessage,
    ReadyMessage,
    ResultMessage,
    decode_message,
    decode_printed,
)

if TYPE_CHECKING:
    from weasel_repl.environment import ReplEnvironment

logger = logging.getLogger(__name__)


class MessageDispatcher:
    """Decodes inbound frames and routes them by op tag."""

    def __init__(self, env: ReplEnvironment):
        self.env = env
        self._handlers: dict[OpCode, Callable] = {
            OpCode.RESULT: self._on_result,
            OpCode.PRINT: self._on_print,
            OpCode.READY: self._on_ready,
        }

    def on_message(self, raw: str) -> None:
        """Handle one raw frame from the transport."""
        try:
            message = decode_message(raw)
        except ProtocolError as e:
            logger.warning("Dropping frame: %s", e)
            return

        if message is None:
            logger.debug("Ignoring frame with unknown op: %.100s", raw)
            return

        self._handlers[OpCode(message.op)](message)

    def _on_result(self, message: ResultMessage) -> None:
        if not self.env.correlator.deliver(message.value):
            logger.warning("Dropping result with no evaluation outstanding: %.100r", message.value)

    def _on_print(self, message: PrintMessage) -> None:
        out = self.env.output_sink or sys.stdout
        out.write(decode_printed(message.value))
        out.flush()

    def _on_ready(self, message: ReadyMessage) -> None:
        # The client reloaded and only has its bootstrap code.
        self.env.loaded.reset(self.env.preloaded_units)
        directive = namespace_directive(self.env.config.init_namespace)
        try:
            self.env.correlator.send_only(EvalRequest(code=directive))
        except RemoteEvaluationError as e:
            logger.warning("Could not initialize namespace %s: %s", self.env.config.init_namespace, e)
