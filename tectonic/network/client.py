"""
Async Tectonic Client Module

TectonicClient owns one TCP connection to a Tectonic server and exchanges
text commands for binary response frames.

The wire protocol carries no request identifiers, so correlation relies on
ordering: the client keeps exactly one request outstanding (callers queue
on a lock in FIFO order) and a single reader task hands each decoded frame
to the oldest pending request.

Usage:
    async with TectonicClient("localhost", 9001) as db:
        await db.create("btc_usd")
        await db.use("btc_usd")
        await db.add(Update(1505177459.658, 139010, False, True, 0.07, 7.6))
        rows = await db.get_all()
"""

import asyncio
import json
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Deque, Iterable, Optional

from ..config.settings import settings
from ..errors import (
    ConnectionClosedError,
    FramingError,
    RequestCancelledError,
    RequestTimeoutError,
    TectonicConnectionError,
    TectonicError,
)
from ..protocol.commands import Command, Response, Update
from ..protocol.framing import DecoderState, Frame, FrameDecoder

logger = logging.getLogger(__name__)


class RequestState(Enum):
    """Lifecycle of a single request."""
    SENT = auto()
    AWAITING_HEADER = auto()
    AWAITING_BODY = auto()
    COMPLETE = auto()
    FAILED = auto()


@dataclass(eq=False)
class PendingRequest:
    """A command that has been written and is waiting for its frame."""
    id: int
    command: str
    future: asyncio.Future
    state: RequestState = field(default=RequestState.SENT)

    def resolve(self, response: Response) -> None:
        if not self.future.done():
            self.future.set_result(response)
        self.state = RequestState.COMPLETE

    def fail(self, exc: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(exc)
        self.state = RequestState.FAILED


class TectonicClient:
    """
    Asynchronous client for a Tectonic time-series database server.

    Protocol failures (server success flag 0) are returned as
    ``Response(success=False, ...)``. Transport problems raise
    TectonicConnectionError, and a request that outlives its timeout
    raises RequestTimeoutError. There is no reconnection: once the
    connection is closed every further command raises
    ConnectionClosedError.

    Attributes:
        host: Server address
        port: Server port
        timeout: Default per-request timeout in seconds (0 disables it)
    """

    def __init__(
            self,
            host: str = None,
            port: int = None,
            timeout: float = None,
    ):
        """
        Initialize the client. The connection opens on connect() or on the
        first command.

        Args:
            host: Server address (default from settings)
            port: Server port (default from settings)
            timeout: Default request timeout (default from settings)
        """
        self.host = host if host is not None else settings.HOST
        self.port = port if port is not None else settings.PORT
        self.timeout = timeout if timeout is not None else settings.REQUEST_TIMEOUT

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._decoder = FrameDecoder()
        self._lock = asyncio.Lock()
        self._pending: Deque[PendingRequest] = deque()
        self._next_id = 1
        self._closed = False

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def is_connected(self) -> bool:
        return self._writer is not None and not self._closed

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def connect(self) -> None:
        """
        Open the connection and start the reader task.

        Raises:
            TectonicConnectionError: if the server cannot be reached
            ConnectionClosedError: if this client was already closed
        """
        if self._closed:
            raise ConnectionClosedError(f"Connection to {self.address} is closed")
        if self._writer is not None:
            return

        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=settings.CONNECT_TIMEOUT,
            )
        except asyncio.TimeoutError as exc:
            self._closed = True
            raise TectonicConnectionError(
                f"Timed out connecting to {self.address}"
            ) from exc
        except OSError as exc:
            self._closed = True
            raise TectonicConnectionError(
                f"Could not connect to {self.address}: {exc}"
            ) from exc

        logger.info(f"Client connected to: {self.address}")
        self._reader_task = asyncio.create_task(self._read_loop())

    async def send_command(
            self,
            text: str,
            timeout: Optional[float] = None,
            cancel: Optional[asyncio.Event] = None,
    ) -> Response:
        """
        Send one command line and wait for its response frame.

        Concurrent callers are serialised; each waits for the previous
        request to complete before its command is written.

        Args:
            text: Command text without the trailing newline
            timeout: Seconds to wait for the response (None uses the client
                default, 0 waits forever)
            cancel: Event that aborts the request when set

        Returns:
            The decoded Response

        Raises:
            ValueError: if the command contains a line break
            ConnectionClosedError: if the connection is closed
            TectonicConnectionError: on transport failure
            FramingError: if the response frame is malformed
            RequestTimeoutError: if no response arrives in time
            RequestCancelledError: if ``cancel`` is set first
        """
        if "\n" in text or "\r" in text:
            raise ValueError(f"Command must be a single line: {text!r}")

        async with self._lock:
            if self._closed:
                raise ConnectionClosedError(f"Connection to {self.address} is closed")
            if cancel is not None and cancel.is_set():
                raise RequestCancelledError(f"Request {text!r} was cancelled before sending")
            if self._writer is None:
                await self.connect()

            request = PendingRequest(
                id=self._next_id,
                command=text,
                future=asyncio.get_running_loop().create_future(),
            )
            self._next_id += 1
            self._pending.append(request)

            try:
                self._writer.write(f"{text}\n".encode("utf-8"))
                await self._writer.drain()
            except (ConnectionError, OSError) as exc:
                error = TectonicConnectionError(f"Failed to send {text!r}: {exc}")
                self._abandon(request, error)
                raise error from exc

            if request.state is RequestState.SENT:
                request.state = RequestState.AWAITING_HEADER
            logger.debug(f"[{request.id}] -> {text!r}")
            return await self._await_response(request, timeout, cancel)

    async def _await_response(
            self,
            request: PendingRequest,
            timeout: Optional[float],
            cancel: Optional[asyncio.Event],
    ) -> Response:
        if timeout is None:
            timeout = self.timeout

        waiters = {request.future}
        cancel_waiter = None
        if cancel is not None:
            cancel_waiter = asyncio.ensure_future(cancel.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=timeout or None,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            self._abandon(request, RequestCancelledError(
                f"Request {request.id} ({request.command!r}) was cancelled"
            ))
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if request.future in done:
            response = request.future.result()
            logger.debug(
                f"[{request.id}] <- success={response.success} "
                f"{len(response.payload)} chars"
            )
            return response

        if cancel_waiter is not None and cancel_waiter in done:
            error = RequestCancelledError(
                f"Request {request.id} ({request.command!r}) was cancelled"
            )
        else:
            error = RequestTimeoutError(
                f"No response to {request.command!r} within {timeout}s"
            )
        logger.warning(
            f"[{request.id}] {error} (state {request.state.name}); closing connection"
        )
        self._abandon(request, error)
        raise error

    def _abandon(self, request: PendingRequest, reason: TectonicError) -> None:
        """
        Give up on a request and close the connection.

        Its reply may still arrive and would be matched to the next
        request, so the stream cannot be reused.
        """
        request.state = RequestState.FAILED
        if not request.future.done():
            request.future.cancel()
        if request in self._pending:
            self._pending.remove(request)
        self._shutdown(ConnectionClosedError(f"Connection closed: {reason}"))

    async def _read_loop(self) -> None:
        """Read frames from the socket and dispatch them in FIFO order."""
        reason: Optional[Exception] = None
        try:
            while True:
                data = await self._reader.read(settings.READ_BUFFER_SIZE)
                if not data:
                    reason = ConnectionClosedError(
                        f"Connection closed by server {self.address}"
                    )
                    break

                if self._on_data(data):
                    reason = ConnectionClosedError(
                        f"Connection to {self.address} closed after exit reply"
                    )
                    return

        except FramingError as exc:
            logger.error(f"Bad frame from {self.address}: {exc}")
            reason = exc
        except (ConnectionError, OSError) as exc:
            logger.debug(f"Connection error from {self.address}: {exc}")
            reason = TectonicConnectionError(f"Connection error: {exc}")
        except Exception as exc:
            logger.exception(f"Unexpected error reading from {self.address}: {exc}")
            reason = TectonicError(f"Unexpected error: {exc}")
        finally:
            # reason stays None when the task was cancelled by exit()
            if reason is not None:
                self._shutdown(reason)

    def _on_data(self, data: bytes) -> bool:
        """
        Decode received bytes and resolve completed requests.

        Returns True when a frame asked for the connection to close.
        """
        for frame in self._decoder.feed(data):
            self._dispatch(frame)
            if frame.requests_exit:
                logger.info("Server sent exit; closing connection")
                return True
        self._track_progress()
        return False

    def _dispatch(self, frame: Frame) -> None:
        if not self._pending:
            logger.warning(f"Dropping unsolicited frame ({len(frame.body)} bytes)")
            return
        request = self._pending.popleft()
        request.resolve(frame.to_response())

    def _track_progress(self) -> None:
        if not self._pending:
            return
        head = self._pending[0]
        if self._decoder.state is DecoderState.AWAITING_BODY:
            head.state = RequestState.AWAITING_BODY
        else:
            head.state = RequestState.AWAITING_HEADER

    def _shutdown(self, reason: Exception) -> None:
        """Mark the client closed and fail every pending request."""
        if not self._closed:
            logger.debug(f"Closing connection to {self.address}: {reason}")
        self._closed = True

        while self._pending:
            self._pending.popleft().fail(reason)

        task = self._reader_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if self._writer is not None:
            self._writer.close()

    async def exit(self) -> None:
        """Close the connection. Safe to call more than once."""
        was_open = self.is_connected
        self._shutdown(ConnectionClosedError(f"Connection to {self.address} closed by client"))

        if self._writer is not None:
            try:
                await self._writer.wait_closed()
            except (ConnectionError, OSError) as exc:
                logger.debug(f"Ignoring error while closing {self.address}: {exc}")

        task = self._reader_task
        if task is not None and task is not asyncio.current_task():
            await asyncio.wait([task])

        if was_open:
            logger.info("Client closed")

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.exit()

    # ------------------------------------------------------------------
    # Verbs
    # ------------------------------------------------------------------

    async def execute(
            self,
            command: Command,
            timeout: Optional[float] = None,
            cancel: Optional[asyncio.Event] = None,
    ) -> Response:
        """Send a Command object."""
        return await self.send_command(command.line, timeout=timeout, cancel=cancel)

    async def info(self, timeout=None, cancel=None) -> Response:
        return await self.execute(Command.info(), timeout, cancel)

    async def ping(self, timeout=None, cancel=None) -> Response:
        return await self.execute(Command.ping(), timeout, cancel)

    async def help(self, timeout=None, cancel=None) -> Response:
        return await self.execute(Command.help(), timeout, cancel)

    async def add(
            self,
            update: Update,
            into: Optional[str] = None,
            timeout=None,
            cancel=None,
    ) -> Response:
        """
        Add one update to the current database, or to ``into`` if given.
        """
        return await self.execute(Command.add(update, into), timeout, cancel)

    async def bulk_add(
            self,
            updates: Iterable[Update],
            timeout=None,
            cancel=None,
    ) -> Response:
        """
        Add many updates with BULKADD ... DDAKLUB.

        Each data line is its own round trip. If the server rejects a line
        the batch is still terminated and the rejecting response returned;
        otherwise the DDAKLUB response is returned.
        """
        response = await self.execute(Command.bulkadd_start(), timeout, cancel)
        if not response.success:
            return response

        for update in updates:
            response = await self.execute(Command.bulkadd_line(update), timeout, cancel)
            if not response.success:
                logger.warning(f"Bulk add stopped at {update.to_line()!r}: {response.payload}")
                await self.execute(Command.bulkadd_end(), timeout, cancel)
                return response

        return await self.execute(Command.bulkadd_end(), timeout, cancel)

    async def get_all(self, timeout=None, cancel=None) -> Any:
        """Return every update of the current database as parsed JSON."""
        return self._json_result(await self.execute(Command.get_all(), timeout, cancel))

    async def get(self, count: int, timeout=None, cancel=None) -> Any:
        """Return the first ``count`` updates as parsed JSON."""
        return self._json_result(await self.execute(Command.get(count), timeout, cancel))

    async def clear(self, timeout=None, cancel=None) -> Response:
        return await self.execute(Command.clear(), timeout, cancel)

    async def clear_all(self, timeout=None, cancel=None) -> Response:
        return await self.execute(Command.clear(everything=True), timeout, cancel)

    async def flush(self, timeout=None, cancel=None) -> Response:
        return await self.execute(Command.flush(), timeout, cancel)

    async def flush_all(self, timeout=None, cancel=None) -> Response:
        return await self.execute(Command.flush(everything=True), timeout, cancel)

    async def create(self, name: str, timeout=None, cancel=None) -> Response:
        return await self.execute(Command.create(name), timeout, cancel)

    async def use(self, name: str, timeout=None, cancel=None) -> Response:
        return await self.execute(Command.use(name), timeout, cancel)

    @staticmethod
    def _json_result(response: Response) -> Any:
        """
        Parsed JSON for a successful response, the raw payload otherwise.
        """
        if not response.success:
            return response.payload
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            logger.warning(f"Response is not valid JSON ({exc}); returning raw payload")
            return response.payload
