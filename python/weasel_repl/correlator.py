"""Request/reply correlation for single-flight evaluation.

The REPL caller is synchronous, but replies arrive asynchronously on the
transport's delivery thread. The Correlator pairs each outbound evaluation
with the next inbound result through a single-slot handoff:

    reply = correlator.issue(EvalRequest(code="1 + 1"))
    # blocks until the dispatcher calls correlator.deliver(...)

Only one evaluation may be outstanding at a time. There is no queue, so a
second ``issue`` while one is pending fails immediately.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from weasel_repl.errors import RemoteEvaluationError, SingleFlightError
from weasel_repl.protocol import encode_message

if TYPE_CHECKING:
    from weasel_repl.transport import Transport

logger = logging.getLogger(__name__)


class ReplyState(str, Enum):
    """State of a pending reply slot."""

    PENDING = "pending"
    RESOLVED = "resolved"
    FAILED = "failed"


@dataclass
class PendingReply:
    """A write-once, read-once slot for the reply to one evaluation.

    The slot is filled from the transport thread and read by the caller
    blocked in ``wait``.
    """

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: ReplyState = ReplyState.PENDING
    value: Any = None
    error: str | None = None
    _done: threading.Event = field(default_factory=threading.Event, repr=False)

    def is_pending(self) -> bool:
        return self.state == ReplyState.PENDING

    def is_resolved(self) -> bool:
        return self.state == ReplyState.RESOLVED

    def is_failed(self) -> bool:
        return self.state == ReplyState.FAILED

    def resolve(self, value: Any) -> None:
        """Fill the slot with the evaluation result."""
        if self.state != ReplyState.PENDING:
            raise RuntimeError(f"Cannot resolve reply in state {self.state}")
        self.value = value
        self.state = ReplyState.RESOLVED
        self._done.set()

    def fail(self, error: str) -> None:
        """Mark the slot as failed, waking the waiter."""
        if self.state != ReplyState.PENDING:
            raise RuntimeError(f"Cannot fail reply in state {self.state}")
        self.error = error
        self.state = ReplyState.FAILED
        self._done.set()

    def wait(self, timeout: float | None = None) -> Any:
        """Block until the slot is filled and return its value.

        Raises:
            RemoteEvaluationError: If the slot failed or the timeout expired.
        """
        if not self._done.wait(timeout):
            raise RemoteEvaluationError(f"No reply received within {timeout}s")
        if self.state == ReplyState.FAILED:
            raise RemoteEvaluationError(self.error or "Evaluation failed")
        return self.value

    def __repr__(self) -> str:
        return f"PendingReply({self.id[:8]}..., {self.state.value})"


class Correlator:
    """Holds at most one outstanding evaluation and pairs it with its reply."""

    def __init__(self, transport: Transport, timeout: float | None = None):
        self._transport = transport
        self._timeout = timeout
        self._lock = threading.Lock()
        self._pending: PendingReply | None = None

    @property
    def pending(self) -> PendingReply | None:
        """The armed reply slot, if any."""
        with self._lock:
            return self._pending

    def issue(self, message: BaseModel) -> Any:
        """Send an evaluation request and block until its reply arrives.

        Raises:
            SingleFlightError: If another evaluation is still outstanding.
            RemoteEvaluationError: If the request could not be sent, the
                client disconnected, or the wait timed out.
        """
        reply = PendingReply()
        with self._lock:
            if self._pending is not None:
                raise SingleFlightError()
            self._pending = reply

        try:
            try:
                self._transport.send(encode_message(message))
            except RemoteEvaluationError:
                raise
            except Exception as e:
                raise RemoteEvaluationError(f"Failed to send request: {e}") from e
            return reply.wait(self._timeout)
        finally:
            with self._lock:
                if self._pending is reply:
                    self._pending = None

    def send_only(self, message: BaseModel) -> None:
        """Send a request without arming the reply slot."""
        self._transport.send(encode_message(message))

    def deliver(self, value: Any) -> bool:
        """Fulfil the armed slot. Returns False if nothing was waiting."""
        with self._lock:
            reply = self._pending
            if reply is None or not reply.is_pending():
                return False
            reply.resolve(value)
            return True

    def fail_pending(self, error: str) -> bool:
        """Fail the armed slot. Returns False if nothing was waiting."""
        with self._lock:
            reply = self._pending
            if reply is None or not reply.is_pending():
                return False
            logger.info("Failing pending reply %s: %s", reply.id[:8], error)
            reply.fail(error)
            return True
