"""Blocking client for the e1d control socket.

A client queries the daemon about its E1 interfaces, lines and timeslots,
configures lines and opens timeslots.  An opened timeslot is handed over
as a file descriptor passed on the control socket.  Events the daemon
sends between requests are passed to a registered callback.
"""

from __future__ import annotations

import os
import socket
from typing import Callable, List, Optional, Tuple, Union

from .protocol import (
    DEFAULT_SOCKET,
    INVALID,
    TS_OPEN_F_FORCE,
    TYPE_ERROR,
    TYPE_MASK,
    TYPE_RESPONSE,
    IntfInfo,
    LineConfig,
    LineInfo,
    LineMode,
    Message,
    MsgType,
    ProtocolError,
    TsConfig,
    TsInfo,
    TsMode,
    build_message,
    recv_message,
    send_message,
    unpack_array,
)

EventCallback = Callable[[Union[MsgType, int], int, int, int, bytes], None]


class ClientError(Exception):
    """A request to the daemon failed or its answer was not acceptable."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


def _close_fd(fd: Optional[int]) -> None:
    if fd is not None and fd >= 0:
        os.close(fd)


def _event_type(value: int) -> Union[MsgType, int]:
    try:
        return MsgType(value)
    except ValueError:
        return value


class E1dClient:
    """Connection to the control socket of the E1 daemon."""

    def __init__(self, path: str = DEFAULT_SOCKET, sock: Optional[socket.socket] = None) -> None:
        self._event_cb: Optional[EventCallback] = None
        if sock is not None:
            self._sock: Optional[socket.socket] = sock
            return
        new_sock = socket.socket(socket.AF_UNIX, socket.SOCK_SEQPACKET)
        try:
            new_sock.connect(path)
        except OSError as exc:
            new_sock.close()
            raise ClientError(f"cannot connect to {path}: {exc}") from exc
        self._sock = new_sock

    # -- lifecycle -----------------------------------------------------

    def close(self) -> None:
        """Close the control connection; calling it again does nothing."""
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def fileno(self) -> int:
        """File descriptor of the control socket, for use with select()."""
        return self._require_open().fileno()

    def __enter__(self) -> "E1dClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _require_open(self) -> socket.socket:
        if self._sock is None:
            raise ClientError("client is closed")
        return self._sock

    # -- events --------------------------------------------------------

    def register_event_handler(self, callback: Optional[EventCallback]) -> None:
        """Set the callable invoked as callback(event, intf, line, ts, data)."""
        self._event_cb = callback

    def _dispatch(self, message: Message) -> None:
        if self._event_cb is None:
            return
        self._event_cb(_event_type(message.msg_type), message.intf, message.line,
                       message.ts, message.payload)

    def handle_readable(self) -> Message:
        """Read one pending event from the socket and dispatch it.

        Loss of the connection closes the client; a message that is not an
        event is rejected.  Both raise ClientError.
        """
        sock = self._require_open()
        try:
            message, fd = recv_message(sock)
        except ProtocolError as exc:
            raise ClientError(f"malformed message: {exc}") from exc
        except OSError as exc:
            self.close()
            raise ClientError("lost connection with the control socket") from exc
        if not message.is_event():
            _close_fd(fd)
            raise ClientError(f"unexpected non-event message type 0x{message.msg_type:02x}")
        _close_fd(fd)
        self._dispatch(message)
        return message

    # -- requests ------------------------------------------------------

    def _query(self, msg_type: MsgType, intf: int, line: int, ts: int,
               payload: bytes = b"") -> Tuple[Message, Optional[int]]:
        sock = self._require_open()
        request = build_message(msg_type, intf, line, ts, payload)
        try:
            send_message(sock, request)
        except (OSError, ProtocolError) as exc:
            raise ClientError(f"cannot send request: {exc}") from exc

        was_blocking = sock.getblocking()
        sock.setblocking(True)
        try:
            while True:
                try:
                    message, fd = recv_message(sock)
                except (OSError, ProtocolError) as exc:
                    raise ClientError(f"no valid response: {exc}") from exc
                if not message.is_event():
                    break
                _close_fd(fd)
                self._dispatch(message)
        finally:
            sock.setblocking(was_blocking)

        if message.msg_type != int(msg_type) | TYPE_RESPONSE:
            _close_fd(fd)
            if message.msg_type & TYPE_MASK == TYPE_ERROR:
                code = message.msg_type & 0x3F
                raise ClientError(f"daemon reported error {code}", code=code)
            raise ClientError(f"unexpected response type 0x{message.msg_type:02x}")
        return message, fd

    def _query_records(self, msg_type: MsgType, cls, intf: int, line: int, ts: int) -> list:
        message, fd = self._query(msg_type, intf, line, ts)
        _close_fd(fd)
        return unpack_array(cls, message.payload)

    def intf_query(self, intf: int = INVALID) -> List[IntfInfo]:
        """Information about one interface, or all with INVALID."""
        return self._query_records(MsgType.CMD_INTF_QUERY, IntfInfo, intf, INVALID, INVALID)

    def line_query(self, intf: int, line: int = INVALID) -> List[LineInfo]:
        """Information about one line of an interface, or all with INVALID."""
        return self._query_records(MsgType.CMD_LINE_QUERY, LineInfo, intf, line, INVALID)

    def ts_query(self, intf: int, line: int, ts: int = INVALID) -> List[TsInfo]:
        """Information about one timeslot of a line, or all with INVALID."""
        return self._query_records(MsgType.CMD_TS_QUERY, TsInfo, intf, line, ts)

    def line_config(self, intf: int, line: int, mode: Union[LineMode, int]) -> LineInfo:
        """Set the mode of a line and return the line information sent back."""
        message, fd = self._query(MsgType.CMD_LINE_CONFIG, intf, line, INVALID,
                                  LineConfig(mode).pack())
        _close_fd(fd)
        if len(message.payload) != LineInfo.SIZE:
            raise ClientError(f"line config response of {len(message.payload)} bytes")
        return LineInfo.unpack(message.payload)

    def set_sa_bits(self, intf: int, line: int, sa_bits: int) -> None:
        """Set the Sa bits transmitted on a line."""
        if not 0 <= sa_bits <= 0xFF:
            raise ClientError("sa_bits must fit in one byte")
        message, fd = self._query(MsgType.CMD_SABITS, intf, line, INVALID, bytes([sa_bits]))
        _close_fd(fd)
        if message.payload:
            raise ClientError(f"Sa bits response carries {len(message.payload)} bytes")

    def _ts_open(self, intf: int, line: int, ts: int, mode: Union[TsMode, int],
                 read_bufsize: int, flags: int) -> int:
        cfg = TsConfig(mode, flags, read_bufsize)
        message, fd = self._query(MsgType.CMD_TS_OPEN, intf, line, ts, cfg.pack())
        if fd is None or fd < 0 or len(message.payload) != TsInfo.SIZE:
            _close_fd(fd)
            raise ClientError("timeslot open response without descriptor or of wrong size")
        return fd

    def ts_open(self, intf: int, line: int, ts: int, mode: Union[TsMode, int],
                read_bufsize: int) -> int:
        """Open a timeslot and return the file descriptor carrying its data."""
        return self._ts_open(intf, line, ts, mode, read_bufsize, 0)

    def ts_open_force(self, intf: int, line: int, ts: int, mode: Union[TsMode, int],
                      read_bufsize: int) -> int:
        """Open a timeslot, taking it over from any client that holds it."""
        return self._ts_open(intf, line, ts, mode, read_bufsize, TS_OPEN_F_FORCE)