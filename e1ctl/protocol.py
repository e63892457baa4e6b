"""Wire format of the e1d control protocol spoken on its UNIX domain socket."""

from __future__ import annotations

import enum
import socket
import struct
from dataclasses import dataclass, field
from typing import ClassVar, Optional, Sequence, Tuple, Type, TypeVar, Union

MAGIC = 0x01E1
MAX_LEN = 4096
TS_SUPERCHAN = 0xFE
INVALID = 0xFF
DEFAULT_SOCKET = "/tmp/osmo-e1d.ctl"
MAX_SIZE_HDLC = 264
TS_OPEN_F_FORCE = 0x80

TYPE_MASK = 0xC0
TYPE_COMMAND = 0x00
TYPE_EVENT = 0x40
TYPE_RESPONSE = 0x80
TYPE_ERROR = 0xC0


class ProtocolError(ValueError):
    """A control protocol message is malformed or cannot be encoded."""


class MsgType(enum.IntEnum):
    """Commands and events of the control protocol."""

    CMD_INTF_QUERY = 0x00
    CMD_LINE_QUERY = 0x01
    CMD_TS_QUERY = 0x02
    CMD_LINE_CONFIG = 0x03
    CMD_TS_OPEN = 0x04
    CMD_SABITS = 0x05
    EVT_LOS_ON = 0x40
    EVT_LOS_OFF = 0x41
    EVT_AIS_ON = 0x42
    EVT_AIS_OFF = 0x43
    EVT_RAI_ON = 0x44
    EVT_RAI_OFF = 0x45
    EVT_LOF_ON = 0x46
    EVT_LOF_OFF = 0x47
    EVT_SABITS = 0x7F

    def kind(self) -> int:
        """Return the type portion: TYPE_COMMAND or TYPE_EVENT."""
        return self.value & TYPE_MASK


class LineMode(enum.IntEnum):
    OFF = 0x00
    CHANNELIZED = 0x20
    SUPERCHANNEL = 0x21
    E1OIP = 0x22


class TsMode(enum.IntEnum):
    OFF = 0x00
    RAW = 0x10
    HDLCFCS = 0x11


_E = TypeVar("_E", bound=enum.IntEnum)


def _coerce(enum_cls: Type[_E], value: int) -> Union[_E, int]:
    try:
        return enum_cls(value)
    except ValueError:
        return value


def _pack(fmt: struct.Struct, *values: int) -> bytes:
    try:
        return fmt.pack(*values)
    except struct.error as exc:
        raise ProtocolError(f"cannot encode {values!r}: {exc}") from exc


def _unpack(fmt: struct.Struct, data: bytes, what: str) -> tuple:
    if len(data) != fmt.size:
        raise ProtocolError(f"{what} needs {fmt.size} bytes, got {len(data)}")
    return fmt.unpack(data)


_HEADER = struct.Struct("<HHBBBB")
HEADER_SIZE = _HEADER.size


@dataclass(frozen=True)
class MsgHeader:
    """Fixed header that starts every control message."""

    msg_type: int
    intf: int = INVALID
    line: int = INVALID
    ts: int = INVALID
    length: int = HEADER_SIZE
    magic: int = MAGIC

    def pack(self) -> bytes:
        return _pack(_HEADER, self.magic, self.length, self.msg_type,
                     self.intf, self.line, self.ts)

    @classmethod
    def unpack(cls, data: bytes) -> "MsgHeader":
        if len(data) < HEADER_SIZE:
            raise ProtocolError(f"message too short for header: {len(data)} bytes")
        magic, length, msg_type, intf, line, ts = _HEADER.unpack(bytes(data[:HEADER_SIZE]))
        if magic != MAGIC:
            raise ProtocolError(f"bad magic 0x{magic:04x}")
        return cls(msg_type=msg_type, intf=intf, line=line, ts=ts, length=length, magic=magic)


@dataclass(frozen=True)
class Message:
    """A complete control message: header fields plus payload."""

    msg_type: int
    intf: int = INVALID
    line: int = INVALID
    ts: int = INVALID
    payload: bytes = b""

    @property
    def header(self) -> MsgHeader:
        return MsgHeader(self.msg_type, self.intf, self.line, self.ts,
                         HEADER_SIZE + len(self.payload))

    def pack(self) -> bytes:
        total = HEADER_SIZE + len(self.payload)
        if total > MAX_LEN:
            raise ProtocolError(f"message of {total} bytes exceeds {MAX_LEN}")
        return self.header.pack() + bytes(self.payload)

    @classmethod
    def unpack(cls, data: bytes) -> "Message":
        hdr = MsgHeader.unpack(data)
        if hdr.length != len(data):
            raise ProtocolError(f"length field {hdr.length} does not match {len(data)} bytes")
        return cls(hdr.msg_type, hdr.intf, hdr.line, hdr.ts, bytes(data[HEADER_SIZE:]))

    def is_event(self) -> bool:
        return (self.msg_type & TYPE_MASK) == TYPE_EVENT


@dataclass(frozen=True)
class IntfInfo:
    """Information about an E1 interface."""

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<BB")
    SIZE: ClassVar[int] = _FORMAT.size

    id: int
    n_lines: int

    def pack(self) -> bytes:
        return _pack(self._FORMAT, self.id, self.n_lines)

    @classmethod
    def unpack(cls, data: bytes) -> "IntfInfo":
        id_, n_lines = _unpack(cls._FORMAT, data, cls.__name__)
        return cls(id_, n_lines)


@dataclass(frozen=True)
class LineConfig:
    """Configuration of an E1 line."""

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<B")
    SIZE: ClassVar[int] = _FORMAT.size

    mode: Union[LineMode, int] = LineMode.OFF

    def pack(self) -> bytes:
        return _pack(self._FORMAT, int(self.mode))

    @classmethod
    def unpack(cls, data: bytes) -> "LineConfig":
        (mode,) = _unpack(cls._FORMAT, data, cls.__name__)
        return cls(_coerce(LineMode, mode))


@dataclass(frozen=True)
class LineInfo:
    """Information about an E1 line."""

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<BBB")
    SIZE: ClassVar[int] = _FORMAT.size

    id: int
    cfg: LineConfig = field(default_factory=LineConfig)
    status: int = 0

    def pack(self) -> bytes:
        return _pack(self._FORMAT, self.id, int(self.cfg.mode), self.status)

    @classmethod
    def unpack(cls, data: bytes) -> "LineInfo":
        id_, mode, status = _unpack(cls._FORMAT, data, cls.__name__)
        return cls(id_, LineConfig(_coerce(LineMode, mode)), status)


@dataclass(frozen=True)
class TsConfig:
    """Configuration of an E1 timeslot."""

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<BBH")
    SIZE: ClassVar[int] = _FORMAT.size

    mode: Union[TsMode, int] = TsMode.OFF
    flags: int = 0
    read_bufsize: int = 0

    def pack(self) -> bytes:
        return _pack(self._FORMAT, int(self.mode), self.flags, self.read_bufsize)

    @classmethod
    def unpack(cls, data: bytes) -> "TsConfig":
        mode, flags, bufsize = _unpack(cls._FORMAT, data, cls.__name__)
        return cls(_coerce(TsMode, mode), flags, bufsize)


@dataclass(frozen=True)
class TsInfo:
    """Information about an E1 timeslot."""

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<BBBHB")
    SIZE: ClassVar[int] = _FORMAT.size

    id: int
    cfg: TsConfig = field(default_factory=TsConfig)
    status: int = 0

    def pack(self) -> bytes:
        return _pack(self._FORMAT, self.id, int(self.cfg.mode), self.cfg.flags,
                     self.cfg.read_bufsize, self.status)

    @classmethod
    def unpack(cls, data: bytes) -> "TsInfo":
        id_, mode, flags, bufsize, status = _unpack(cls._FORMAT, data, cls.__name__)
        return cls(id_, TsConfig(_coerce(TsMode, mode), flags, bufsize), status)


_T = TypeVar("_T")


def unpack_array(cls, data: bytes) -> list:
    """Decode as many whole records of ``cls`` as ``data`` holds; a trailing partial record is ignored."""
    size = cls.SIZE
    whole = len(data) - len(data) % size
    return [cls.unpack(bytes(data[offset:offset + size])) for offset in range(0, whole, size)]


def build_message(msg_type: int, intf: int = INVALID, line: int = INVALID,
                  ts: int = INVALID, payload: bytes = b"") -> Message:
    """Create a message addressed to an interface, line and timeslot."""
    return Message(int(msg_type), intf, line, ts, bytes(payload))


def send_message(sock: socket.socket, message: Message, fd: Optional[int] = None) -> int:
    """Send one message, passing ``fd`` along with it when given."""
    data = message.pack()
    if fd is not None and fd >= 0:
        return socket.send_fds(sock, [data], [fd])
    return sock.send(data)


def recv_message(sock: socket.socket) -> Tuple[Message, Optional[int]]:
    """Receive one message and the file descriptor passed with it, if any."""
    data, fds, _flags, _addr = socket.recv_fds(sock, MAX_LEN, 1)
    if not data:
        _close_all(fds)
        raise ConnectionError("control connection closed by peer")
    try:
        message = Message.unpack(data)
    except ProtocolError:
        _close_all(fds)
        raise
    return message, (fds[0] if fds else None)


def _close_all(fds: Sequence[int]) -> None:
    import os

    for fd in fds:
        os.close(fd)