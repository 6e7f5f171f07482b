"""Encoding JavaScript into evaluation requests.

Code is delivered to the client in one of two ways:

- inline: the code travels in the ``eval-js`` frame itself;
- staged file: the code is written to a temp file and the ``eval-js-file``
  frame carries only its path, keeping frames small for large payloads.

Either way the code is wrapped so an exception thrown in the browser is
logged to its console and stored in ``window.__weasel_tmp_err`` instead of
escaping the evaluation.
"""

from __future__ import annotations

import logging
import re
import tempfile
import time
from enum import Enum
from pathlib import Path
from typing import Protocol

from weasel_repl.protocol import EvalFileRequest, EvalRequest, OutboundMessage

logger = logging.getLogger(__name__)

ERROR_VAR = "window.__weasel_tmp_err"
RESULT_VAR = "window.__weasel_tmp"

# Expressions whose printed value the REPL wants back are compiled to a
# cljs.core.pr_str call.
_EXPRESSION_RE = re.compile(r"^\s*cljs\.core\.pr_str\.call.*", re.IGNORECASE | re.DOTALL)


class DeliveryStrategy(str, Enum):
    """How code is delivered to the client."""

    INLINE = "inline"
    STAGED_FILE = "staged-file"


class PayloadEncoder(Protocol):
    def encode_request(self, code: str) -> OutboundMessage: ...

    def release(self, request: OutboundMessage) -> None: ...

    def cleanup(self) -> None: ...


def is_expression(code: str) -> bool:
    """Check whether ``code`` renders a value that must be captured."""
    return _EXPRESSION_RE.match(code) is not None


def wrap_code(code: str, capture: bool = False) -> str:
    """Wrap code in the error-trapping try/catch.

    With ``capture`` the code's value is also assigned to ``RESULT_VAR``.
    The block closes on its own line so a trailing line comment in
    ``code`` cannot swallow the brace.
    """
    head = f"{ERROR_VAR}=null; try {{"
    if capture:
        head += f"{RESULT_VAR}="
    return f"{head}{code}\n}} catch(e) {{ console.error(e); {ERROR_VAR}=e;}}"


def namespace_directive(namespace: str) -> str:
    """JavaScript that declares ``namespace`` as the current REPL namespace."""
    return f"goog.provide('{namespace}');\ngoog.require('cljs.core');\n"


class InlineEncoder:
    """Send code in the frame body.

    A try statement evaluates to the value of its block, so wrapping does
    not hide the result from the client's ``eval``.
    """

    def encode_request(self, code: str) -> EvalRequest:
        return EvalRequest(code=wrap_code(code))

    def release(self, request: OutboundMessage) -> None:
        pass

    def cleanup(self) -> None:
        pass


class StagedFileEncoder:
    """Write code to a temp file and send its path."""

    def __init__(self, directory: str | Path | None = None):
        self.directory = Path(directory) if directory is not None else None
        self.staged: list[Path] = []

    def stage(self, code: str) -> Path:
        """Write the wrapped code to a uniquely named file and return its path."""
        prefix = f"weasel_js_{int(time.time() * 1000)}"
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            prefix=prefix,
            suffix=".js",
            dir=self.directory,
            delete=False,
        ) as f:
            f.write(wrap_code(code, capture=is_expression(code)))
        path = Path(f.name).resolve()
        self.staged.append(path)
        logger.debug("Staged %d chars of code in %s", len(code), path)
        return path

    def encode_request(self, code: str) -> EvalFileRequest:
        return EvalFileRequest(file=str(self.stage(code)))

    def release(self, request: OutboundMessage) -> None:
        """Remove the file staged for ``request`` once it has been answered."""
        if not isinstance(request, EvalFileRequest):
            return
        path = Path(request.file)
        path.unlink(missing_ok=True)
        if path in self.staged:
            self.staged.remove(path)

    def cleanup(self) -> None:
        """Remove every file staged so far."""
        for path in self.staged:
            path.unlink(missing_ok=True)
        self.staged.clear()


def make_encoder(
    strategy: DeliveryStrategy, staging_dir: str | Path | None = None
) -> PayloadEncoder:
    """Build the encoder for a delivery strategy."""
    if strategy == DeliveryStrategy.STAGED_FILE:
        return StagedFileEncoder(staging_dir)
    return InlineEncoder()
