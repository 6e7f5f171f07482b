"""Command line entry point for the Weasel REPL.

Starts the WebSocket server, then reads one JavaScript statement per line
from stdin, evaluates it in the connected browser and prints the result.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import TextIO

from weasel_repl.config import BridgeConfig
from weasel_repl.environment import ReplEnvironment
from weasel_repl.errors import RemoteEvaluationError, WeaselError
from weasel_repl.payload import DeliveryStrategy

PROMPT = "js> "


class ReplLoop:
    """Line-oriented read-eval-print loop over a ReplEnvironment."""

    def __init__(self, env: ReplEnvironment, stdin: TextIO | None = None, stdout: TextIO | None = None):
        self.env = env
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout
        self.running = True

    def handle_line(self, line: str) -> None:
        """Evaluate one line and print its result or error."""
        code = line.strip()
        if not code:
            return
        if code in (":quit", ":q"):
            self.running = False
            return

        try:
            result = self.env.evaluate(code)
        except RemoteEvaluationError as e:
            self.stdout.write(f"!! {e}\n")
        else:
            self.stdout.write(f"{_format_result(result)}\n")
        self.stdout.flush()

    def run(self) -> None:
        while self.running:
            self.stdout.write(PROMPT)
            self.stdout.flush()
            try:
                line = self.stdin.readline()
            except KeyboardInterrupt:
                break
            if not line:
                # EOF
                break
            self.handle_line(line)


def _format_result(result: object) -> str:
    # Clients report {"status": ..., "value": ...} maps as well as bare values.
    if isinstance(result, dict) and "status" in result:
        if result.get("status") == "success":
            return str(result.get("value", ""))
        return f"!! {result.get('value', result)}"
    return str(result)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="weasel-repl", description="Evaluate JavaScript in a browser over a WebSocket."
    )
    parser.add_argument("--host", help="listen address (default 127.0.0.1)")
    parser.add_argument("--port", type=int, help="listen port (default 9001)")
    parser.add_argument("--src", dest="source_root", help="source root to analyze at startup")
    parser.add_argument(
        "--via-file",
        action="store_true",
        help="deliver code through staged files instead of inline",
    )
    parser.add_argument(
        "--preload",
        action="append",
        dest="preloaded_units",
        metavar="UNIT",
        help="unit already present in the client (repeatable)",
    )
    parser.add_argument("--log-level", default="WARNING", help="logging level (default WARNING)")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = BridgeConfig.from_env(
            host=args.host,
            port=args.port,
            source_root=args.source_root,
            preloaded_units=args.preloaded_units,
            delivery_strategy=DeliveryStrategy.STAGED_FILE if args.via_file else None,
        )
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    env = ReplEnvironment(config)
    try:
        env.setup()
    except (OSError, WeaselError) as e:
        print(f"Could not start server: {e}", file=sys.stderr)
        return 1

    try:
        ReplLoop(env).run()
    except KeyboardInterrupt:
        pass
    finally:
        env.tear_down()
    return 0


if __name__ == "__main__":
    sys.exit(main())
