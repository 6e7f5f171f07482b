"""Wire protocol types for REPL communication.

The bridge talks to the browser client over a WebSocket. Every frame is a
JSON object with an ``op`` tag and an op-specific payload:

    host -> client   {"op": "eval-js", "code": "..."}
                     {"op": "eval-js-file", "file": "/tmp/weasel_js_..."}
    client -> host   {"op": "result", "value": ...}
                     {"op": "print", "value": "\\"text\\""}
                     {"op": "ready"}

This module defines the message types and the encode/decode helpers.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from weasel_repl.errors import ProtocolError


class OpCode(str, Enum):
    """Operation tags understood by either end of the connection."""

    EVAL_JS = "eval-js"
    EVAL_JS_FILE = "eval-js-file"
    RESULT = "result"
    PRINT = "print"
    READY = "ready"


INBOUND_OPS = frozenset({OpCode.RESULT.value, OpCode.PRINT.value, OpCode.READY.value})


# Outbound (host -> client)


class EvalRequest(BaseModel):
    """Request to evaluate JavaScript sent inline in the frame."""

    op: Literal["eval-js"] = "eval-js"
    code: str = Field(..., description="JavaScript source to evaluate")


class EvalFileRequest(BaseModel):
    """Request to evaluate JavaScript staged in a file on the host."""

    op: Literal["eval-js-file"] = "eval-js-file"
    file: str = Field(..., description="Absolute path of the staged script")


OutboundMessage = Union[EvalRequest, EvalFileRequest]


# Inbound (client -> host)


class ResultMessage(BaseModel):
    """Result of the evaluation the host is waiting on."""

    op: Literal["result"] = "result"
    value: Any = Field(default=None, description="Evaluation result as sent by the client")


class PrintMessage(BaseModel):
    """Output printed by code running in the client."""

    op: Literal["print"] = "print"
    value: str = Field(default="", description="Printed text, encoded as a string literal")


class ReadyMessage(BaseModel):
    """Sent by the client once it has (re)loaded and connected."""

    op: Literal["ready"] = "ready"


InboundMessage = Annotated[
    Union[ResultMessage, PrintMessage, ReadyMessage],
    Field(discriminator="op"),
]

_inbound_adapter: TypeAdapter[Any] = TypeAdapter(InboundMessage)


def encode_message(message: BaseModel) -> str:
    """Serialize a message model into a text frame."""
    return message.model_dump_json()


def decode_message(raw: str | bytes) -> ResultMessage | PrintMessage | ReadyMessage | None:
    """Decode an inbound text frame.

    Returns None for well-formed frames carrying an op this host does not
    know, so newer clients can add ops without breaking older hosts.

    Raises:
        ProtocolError: If the frame is not a JSON object or its payload does
            not match the declared op.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Malformed frame: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError(f"Expected a JSON object, got {type(data).__name__}")

    if data.get("op") not in INBOUND_OPS:
        return None

    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as e:
        raise ProtocolError(f"Invalid {data['op']!r} frame: {e}") from e


def decode_printed(value: str) -> str:
    """Turn the transport-safe form of a printed fragment back into text.

    Clients send printed output as a quoted string literal. Anything that is
    not a string literal is passed through unchanged.
    """
    try:
        decoded = json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return value
    if isinstance(decoded, str):
        return decoded
    return value
