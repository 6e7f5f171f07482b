"""Exceptions raised by the Weasel REPL bridge."""

from __future__ import annotations


class WeaselError(Exception):
    """Base class for all bridge errors."""

    pass


class RemoteEvaluationError(WeaselError):
    """Raised when an evaluation cannot complete on the remote side.

    Covers a client that disconnects while a reply is awaited, a send that
    fails, a send with no client connected, and an expired wait timeout.
    Errors thrown by the evaluated code itself never surface here: they are
    trapped remotely (see ``weasel_repl.payload``).
    """

    pass


class SingleFlightError(WeaselError, RuntimeError):
    """Raised when an evaluation is issued while another is outstanding."""

    def __init__(self, message: str = "An evaluation is already in flight"):
        super().__init__(message)


class EnvironmentStateError(WeaselError):
    """Raised when the environment lifecycle is used out of order."""

    pass


class ProtocolError(WeaselError):
    """Raised when an inbound frame cannot be decoded."""

    pass


class DependencyError(WeaselError):
    """Raised when units cannot be resolved or sources cannot be read."""

    pass
