"""Server side of the e1d control socket.

The server accepts client connections on a UNIX domain socket, dispatches
each request to the handler registered for its message type and sends back
a response, optionally passing a file descriptor with it.  Events can be
broadcast to every connected client.
"""

from __future__ import annotations

import enum
import logging
import select
import socket
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Union

from .protocol import (
    HEADER_SIZE,
    INVALID,
    TYPE_ERROR,
    TYPE_RESPONSE,
    Message,
    MsgHeader,
    MsgType,
    ProtocolError,
    build_message,
    recv_message,
    send_message,
)

log = logging.getLogger(__name__)


class ServerFlag(enum.IntFlag):
    """Which addressing fields a request may or must carry."""

    NONE = 0
    INTF_OPT = 1 << 0
    INTF_REQ = 1 << 1
    LINE_OPT = 1 << 2
    LINE_REQ = 1 << 3
    TS_OPT = 1 << 4
    TS_REQ = 1 << 5


class HandlerError(Exception):
    """Raised by a handler to answer a request with an error response."""

    def __init__(self, code: int, message: str = "") -> None:
        super().__init__(message or f"request failed with code {code}")
        self.code = code


@dataclass(frozen=True)
class Reply:
    """Payload of a successful response and an optional descriptor to pass.

    The descriptor stays owned by the handler; the server only sends it.
    """

    payload: bytes = b""
    fd: Optional[int] = None


HandlerResult = Union[Reply, bytes, None]
HandlerFn = Callable[[Any, Message], HandlerResult]


def _field_ok(value: int, flags: int, opt: ServerFlag, req: ServerFlag) -> bool:
    if value == INVALID:
        return not flags & req
    return bool(flags & (opt | req))


@dataclass(frozen=True)
class Handler:
    """Handles requests of one message type.

    ``payload_len`` of None (or negative) accepts any payload length.
    ``fn`` is called as fn(handler_data, request) and returns a Reply,
    raw payload bytes or None for an empty reply.
    """

    msg_type: int
    flags: int
    payload_len: Optional[int]
    fn: HandlerFn

    def accepts(self, header: MsgHeader) -> bool:
        """Whether the addressing and payload size of a request suit this handler."""
        flags = int(self.flags)
        if not (_field_ok(header.intf, flags, ServerFlag.INTF_OPT, ServerFlag.INTF_REQ)
                and _field_ok(header.line, flags, ServerFlag.LINE_OPT, ServerFlag.LINE_REQ)
                and _field_ok(header.ts, flags, ServerFlag.TS_OPT, ServerFlag.TS_REQ)):
            return False
        if self.payload_len is not None and self.payload_len >= 0:
            return self.payload_len == header.length - HEADER_SIZE
        return True


class E1dServer:
    """Listening control socket with its connected clients."""

    def __init__(self, path: Optional[str], handlers: Iterable[Handler],
                 handler_data: Any = None, sock: Optional[socket.socket] = None) -> None:
        self._handlers: List[Handler] = list(handlers)
        self._handler_data = handler_data
        self._conns: List[socket.socket] = []
        if sock is not None:
            self._sock: Optional[socket.socket] = sock
            return
        if path is None:
            raise ValueError("either a path or a listening socket is required")
        listener = socket.socket(socket.AF_UNIX, socket.SOCK_SEQPACKET)
        try:
            listener.bind(path)
            listener.listen()
        except OSError:
            listener.close()
            raise
        self._sock = listener

    # -- lifecycle -----------------------------------------------------

    def close(self) -> None:
        """Disconnect every client and close the listening socket."""
        for conn in list(self._conns):
            self._disconnect(conn)
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def fileno(self) -> int:
        """File descriptor of the listening socket."""
        return self._require_open().fileno()

    def __enter__(self) -> "E1dServer":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _require_open(self) -> socket.socket:
        if self._sock is None:
            raise ValueError("server is closed")
        return self._sock

    def connection_count(self) -> int:
        """Number of clients currently connected."""
        return len(self._conns)

    # -- connections ---------------------------------------------------

    def accept(self) -> socket.socket:
        """Accept one pending client connection and return its socket."""
        conn, _addr = self._require_open().accept()
        self._conns.append(conn)
        log.debug("New incoming connection.")
        return conn

    def _disconnect(self, conn: socket.socket) -> None:
        if conn in self._conns:
            self._conns.remove(conn)
        conn.close()

    def _find_handler(self, msg_type: int) -> Optional[Handler]:
        return next((h for h in self._handlers if h.msg_type == msg_type), None)

    def handle_request(self, conn: socket.socket) -> Optional[Message]:
        """Read one request from ``conn`` and answer it.

        Returns the request served, or None when the client was
        disconnected because its request was unusable or the connection
        failed.
        """
        try:
            request, passed_fd = recv_message(conn)
        except (OSError, ProtocolError) as exc:
            log.debug("Dropping connection: %s", exc)
            self._disconnect(conn)
            return None
        if passed_fd is not None:
            socket.close(passed_fd)

        if not self._serve(conn, request):
            self._disconnect(conn)
            return None
        return request

    def _serve(self, conn: socket.socket, request: Message) -> bool:
        handler = self._find_handler(request.msg_type)
        if handler is None:
            log.error("Unhandled message type: %d.", request.msg_type)
            return False

        if not handler.accepts(request.header):
            log.error("Invalid addressing or payload for message type: %d / (%d/%d/%d).",
                      request.msg_type, request.intf, request.line, request.ts)
            return False

        fd: Optional[int] = None
        try:
            result = handler.fn(self._handler_data, request)
        except HandlerError as exc:
            msg_type = TYPE_ERROR | (exc.code & 0x3F)
            payload = b""
        else:
            if isinstance(result, Reply):
                payload, fd = bytes(result.payload), result.fd
            else:
                payload = bytes(result or b"")
            msg_type = request.msg_type | TYPE_RESPONSE

        response = build_message(msg_type, request.intf, request.line, request.ts, payload)
        try:
            sent = send_message(conn, response, fd)
        except (OSError, ProtocolError) as exc:
            log.error("Cannot send response: %s", exc)
            return False
        return sent > 0

    # -- events --------------------------------------------------------

    def send_event(self, event: Union[MsgType, int], intf: int, line: int, ts: int,
                   data: Optional[bytes] = None) -> None:
        """Send an event message to every connected client."""
        message = build_message(event, intf, line, ts, bytes(data or b""))
        for conn in list(self._conns):
            try:
                send_message(conn, message)
            except OSError as exc:
                log.debug("Cannot deliver event: %s", exc)

    # -- main loop -----------------------------------------------------

    def poll(self, timeout: Optional[float] = None) -> int:
        """Wait up to ``timeout`` seconds and serve whatever became readable.

        Returns the number of sockets that were serviced.
        """
        listener = self._require_open()
        readable, _, _ = select.select([listener, *self._conns], [], [], timeout)
        serviced = 0
        for sock in readable:
            if sock is listener:
                try:
                    self.accept()
                except OSError as exc:
                    log.error("Failed to accept a new connection: %s", exc)
                    continue
            elif sock in self._conns:
                self.handle_request(sock)
            else:
                continue
            serviced += 1
        return serviced