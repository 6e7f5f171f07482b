"""Weasel REPL - evaluate JavaScript in a browser over a WebSocket.

This package bridges a synchronous evaluate-and-return REPL interface to a
browser client connected over a WebSocket, one evaluation at a time.
"""

from weasel_repl.config import BridgeConfig
from weasel_repl.correlator import Correlator, PendingReply
from weasel_repl.environment import EnvironmentState, ReplEnvironment
from weasel_repl.errors import (
    EnvironmentStateError,
    RemoteEvaluationError,
    SingleFlightError,
    WeaselError,
)
from weasel_repl.payload import DeliveryStrategy
from weasel_repl.protocol import (
    EvalFileRequest,
    EvalRequest,
    PrintMessage,
    ReadyMessage,
    ResultMessage,
)

__version__ = "0.1.0"
__all__ = [
    "BridgeConfig",
    "Correlator",
    "DeliveryStrategy",
    "EnvironmentState",
    "EnvironmentStateError",
    "EvalFileRequest",
    "EvalRequest",
    "PendingReply",
    "PrintMessage",
    "ReadyMessage",
    "RemoteEvaluationError",
    "ReplEnvironment",
    "ResultMessage",
    "SingleFlightError",
    "WeaselError",
]
