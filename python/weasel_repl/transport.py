"""WebSocket transport between the REPL host and the browser client.

The transport owns an asyncio event loop running on a dedicated thread.
Inbound frames are handed to a synchronous handler on that thread; callers
on any other thread send frames by scheduling them onto the loop and
waiting for the write to finish.

Only one client is served at a time. A newly connected client replaces the
previous one.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, Protocol

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from weasel_repl.errors import RemoteEvaluationError

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str], None]


class Transport(Protocol):
    """What the environment needs from a message transport."""

    on_disconnect: Callable[[], None] | None

    def start(self, handler: MessageHandler, host: str, port: int) -> None: ...

    def stop(self) -> None: ...

    def send(self, message: str) -> None: ...


def _preview(message: str, limit: int = 200) -> str:
    if len(message) <= limit:
        return message
    return message[: limit - 3] + "..."


class WebSocketTransport:
    """WebSocket server transport backed by ``websockets``."""

    def __init__(self) -> None:
        self.on_disconnect: Callable[[], None] | None = None
        self._handler: MessageHandler | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._server: Server | None = None
        self._connection: ServerConnection | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._host: str | None = None
        self._port: int | None = None

    @property
    def host(self) -> str | None:
        return self._host

    @property
    def port(self) -> int | None:
        """Port the server is bound to, once started."""
        return self._port

    @property
    def connected(self) -> bool:
        return self._connection is not None

    def start(self, handler: MessageHandler, host: str = "127.0.0.1", port: int = 9001) -> None:
        """Start listening for a client.

        Blocks until the listening socket is bound, so bind errors are raised
        here rather than lost on the transport thread.
        """
        if self._loop is not None:
            raise RuntimeError("Transport already started")

        self._handler = handler
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop, name="weasel-transport", daemon=True
        )
        self._thread.start()

        future = asyncio.run_coroutine_threadsafe(self._serve(host, port), self._loop)
        try:
            future.result()
        except Exception:
            self._shutdown_loop()
            raise

    def stop(self) -> None:
        """Close the client connection and the server, then stop the loop."""
        if self._loop is None:
            return
        future = asyncio.run_coroutine_threadsafe(self._close(), self._loop)
        try:
            future.result()
        finally:
            self._shutdown_loop()
        logger.info("Transport stopped")

    def send(self, message: str) -> None:
        """Send a text frame to the connected client.

        Called from the transport thread itself (for example by a message
        handler), the frame is scheduled and this returns immediately.

        Raises:
            RemoteEvaluationError: If no client is connected or the
                connection closed during the write.
        """
        loop = self._loop
        connection = self._connection
        if loop is None:
            raise RemoteEvaluationError("Transport is not started")
        if connection is None:
            raise RemoteEvaluationError("No client connected")

        logger.debug("-> %s", _preview(message))

        if threading.current_thread() is self._thread:
            task = loop.create_task(connection.send(message))
            self._tasks.add(task)
            task.add_done_callback(self._on_send_done)
            return

        future = asyncio.run_coroutine_threadsafe(connection.send(message), loop)
        try:
            future.result()
        except ConnectionClosed as e:
            raise RemoteEvaluationError(f"Client disconnected: {e}") from e

    def _on_send_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Scheduled send failed: %s", task.exception())

    def _run_loop(self) -> None:
        assert self._loop is not None
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def _shutdown_loop(self) -> None:
        loop, thread = self._loop, self._thread
        if loop is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join()
        loop.close()
        self._loop = None
        self._thread = None
        self._server = None
        self._connection = None

    async def _serve(self, host: str, port: int) -> None:
        self._server = await serve(self._handle_connection, host, port)
        sockname = next(iter(self._server.sockets)).getsockname()
        self._host, self._port = sockname[0], sockname[1]
        logger.info("Listening on ws://%s:%s", self._host, self._port)

    async def _close(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()

    async def _handle_connection(self, connection: ServerConnection) -> None:
        previous = self._connection
        self._connection = connection
        logger.info("Client connected from %s", connection.remote_address)

        if previous is not None:
            logger.info("Replacing client %s", previous.remote_address)
            self._notify_disconnect()
            await previous.close()

        try:
            async for message in connection:
                self._deliver(message)
        except ConnectionClosed as e:
            logger.info("Client connection closed abnormally: %s", e)
        finally:
            if self._connection is connection:
                self._connection = None
                logger.info("Client disconnected")
                self._notify_disconnect()

    def _deliver(self, message: str | bytes) -> None:
        if isinstance(message, bytes):
            message = message.decode("utf-8")
        logger.debug("<- %s", _preview(message))
        if self._handler is None:
            return
        try:
            self._handler(message)
        except Exception:
            logger.exception("Message handler failed")

    def _notify_disconnect(self) -> None:
        if self.on_disconnect is not None:
            self.on_disconnect()
