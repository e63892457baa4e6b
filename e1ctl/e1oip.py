"""Messages of the E1-over-IP protocol and OCTOI account settings."""

from __future__ import annotations

import dataclasses
import enum
import struct
from dataclasses import dataclass
from typing import ClassVar, Optional, Tuple, Union

VERSION = 1


class E1oipError(ValueError):
    """An E1oIP message is malformed or cannot be encoded."""


class E1oipMsgType(enum.IntEnum):
    ECHO_REQ = 0
    ECHO_RESP = 1
    TDM_DATA = 2
    SERVICE_REQ = 3
    SERVICE_ACK = 4
    SERVICE_REJ = 5
    REDIR_CMD = 6
    AUTH_REQ = 7
    AUTH_RESP = 8
    ERROR_IND = 9


class E1oipService(enum.IntEnum):
    NONE = 0
    E1_FRAMED = 1


def _service(value: int) -> Union[E1oipService, int]:
    try:
        return E1oipService(value)
    except ValueError:
        return value


def _pack(fmt: struct.Struct, *values) -> bytes:
    try:
        return fmt.pack(*values)
    except struct.error as exc:
        raise E1oipError(f"cannot encode values: {exc}") from exc


def _unpack(fmt: struct.Struct, data: bytes, what: str, exact: bool = True) -> tuple:
    if len(data) < fmt.size or (exact and len(data) != fmt.size):
        raise E1oipError(f"{what} needs {fmt.size} bytes, got {len(data)}")
    return fmt.unpack(bytes(data[:fmt.size]))


def _encode_str(value: str, size: int, name: str) -> bytes:
    raw = value.encode("utf-8")
    if len(raw) > size:
        raise E1oipError(f"{name} longer than {size} bytes")
    return raw


def _decode_str(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("utf-8", errors="replace")


def _check_blob(value: bytes, size: int, name: str) -> bytes:
    if len(value) > size:
        raise E1oipError(f"{name} longer than {size} bytes")
    return bytes(value)


@dataclass(frozen=True)
class E1oipHeader:
    """Two-byte header: version and flags nibbles, then the message type."""

    msg_type: Union[E1oipMsgType, int]
    version: int = VERSION
    flags: int = 0

    def pack(self) -> bytes:
        if not 0 <= self.version <= 0xF or not 0 <= self.flags <= 0xF:
            raise E1oipError("version and flags must fit in four bits")
        if not 0 <= int(self.msg_type) <= 0xFF:
            raise E1oipError("message type must fit in one byte")
        return bytes([(self.flags << 4) | self.version, int(self.msg_type)])

    @classmethod
    def unpack(cls, data: bytes) -> "E1oipHeader":
        if len(data) < 2:
            raise E1oipError("message too short for header")
        first, msg_type = data[0], data[1]
        try:
            kind: Union[E1oipMsgType, int] = E1oipMsgType(msg_type)
        except ValueError:
            kind = msg_type
        return cls(kind, first & 0x0F, first >> 4)


@dataclass(frozen=True)
class Echo:
    """Echo request or response carrying opaque data."""

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("!H")

    seq_nr: int
    data: bytes = b""
    reply: bool = False

    def pack(self) -> bytes:
        return _pack(self._FORMAT, self.seq_nr) + bytes(self.data)

    @classmethod
    def unpack(cls, data: bytes) -> "Echo":
        (seq_nr,) = _unpack(cls._FORMAT, data, "echo", exact=False)
        return cls(seq_nr, bytes(data[cls._FORMAT.size:]))


@dataclass(frozen=True)
class TdmData:
    """TDM payload: frame number, mask of timeslots present and the octets."""

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("!HI")

    frame_nr: int
    ts_mask: int
    data: bytes = b""

    def pack(self) -> bytes:
        return _pack(self._FORMAT, self.frame_nr, self.ts_mask) + bytes(self.data)

    @classmethod
    def unpack(cls, data: bytes) -> "TdmData":
        frame_nr, ts_mask = _unpack(cls._FORMAT, data, "tdm header", exact=False)
        return cls(frame_nr, ts_mask, bytes(data[cls._FORMAT.size:]))

    def active_timeslots(self) -> list:
        """Timeslot numbers set in the mask, in ascending order."""
        return [ts for ts in range(32) if self.ts_mask & (1 << ts)]


@dataclass(frozen=True)
class ServiceRequest:
    """Client hello requesting a service."""

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("!I32s32s16sI")

    requested_service: Union[E1oipService, int]
    subscriber_id: str = ""
    software_id: str = ""
    software_version: str = ""
    capability_flags: int = 0

    def pack(self) -> bytes:
        return _pack(self._FORMAT, int(self.requested_service),
                     _encode_str(self.subscriber_id, 32, "subscriber_id"),
                     _encode_str(self.software_id, 32, "software_id"),
                     _encode_str(self.software_version, 16, "software_version"),
                     self.capability_flags)

    @classmethod
    def unpack(cls, data: bytes) -> "ServiceRequest":
        svc, sub, sw, ver, caps = _unpack(cls._FORMAT, data, "service request")
        return cls(_service(svc), _decode_str(sub), _decode_str(sw), _decode_str(ver), caps)


@dataclass(frozen=True)
class RedirCmd:
    """Server instruction to use another server address and port."""

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("!40sH")

    server_ip: str
    server_port: int

    def pack(self) -> bytes:
        return _pack(self._FORMAT, _encode_str(self.server_ip, 40, "server_ip"),
                     self.server_port)

    @classmethod
    def unpack(cls, data: bytes) -> "RedirCmd":
        ip, port = _unpack(cls._FORMAT, data, "redirect command")
        return cls(_decode_str(ip), port)


_AUTH_FORMAT = struct.Struct("!B16sB16s")


def _unpack_auth(data: bytes, what: str) -> Tuple[bytes, bytes]:
    len1, val1, len2, val2 = _unpack(_AUTH_FORMAT, data, what)
    if len1 > 16 or len2 > 16:
        raise E1oipError(f"{what} field length exceeds 16")
    return val1[:len1], val2[:len2]


@dataclass(frozen=True)
class AuthRequest:
    """Server challenge: RAND and AUTN."""

    rand: bytes = b""
    autn: bytes = b""

    def pack(self) -> bytes:
        rand = _check_blob(self.rand, 16, "rand")
        autn = _check_blob(self.autn, 16, "autn")
        return _pack(_AUTH_FORMAT, len(rand), rand, len(autn), autn)

    @classmethod
    def unpack(cls, data: bytes) -> "AuthRequest":
        return cls(*_unpack_auth(data, "auth request"))


@dataclass(frozen=True)
class AuthResponse:
    """Client answer: RES on success, AUTS on re-sync, neither on failure."""

    res: bytes = b""
    auts: bytes = b""

    def pack(self) -> bytes:
        res = _check_blob(self.res, 16, "res")
        auts = _check_blob(self.auts, 16, "auts")
        return _pack(_AUTH_FORMAT, len(res), res, len(auts), auts)

    @classmethod
    def unpack(cls, data: bytes) -> "AuthResponse":
        return cls(*_unpack_auth(data, "auth response"))

    def outcome(self) -> str:
        """Return "success", "resync" or "failure"."""
        if self.res and self.auts:
            raise E1oipError("auth response carries both RES and AUTS")
        if self.res:
            return "success"
        if self.auts:
            return "resync"
        return "failure"


@dataclass(frozen=True)
class ServiceAck:
    """Server acceptance of a service request."""

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("!I32s32s16sI")

    assigned_service: Union[E1oipService, int]
    server_id: str = ""
    software_id: str = ""
    software_version: str = ""
    capability_flags: int = 0

    def pack(self) -> bytes:
        return _pack(self._FORMAT, int(self.assigned_service),
                     _encode_str(self.server_id, 32, "server_id"),
                     _encode_str(self.software_id, 32, "software_id"),
                     _encode_str(self.software_version, 16, "software_version"),
                     self.capability_flags)

    @classmethod
    def unpack(cls, data: bytes) -> "ServiceAck":
        svc, srv, sw, ver, caps = _unpack(cls._FORMAT, data, "service ack")
        return cls(_service(svc), _decode_str(srv), _decode_str(sw), _decode_str(ver), caps)


@dataclass(frozen=True)
class ServiceReject:
    """Server rejection of a service request."""

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("!I64s")

    rejected_service: Union[E1oipService, int]
    reject_message: str = ""

    def pack(self) -> bytes:
        return _pack(self._FORMAT, int(self.rejected_service),
                     _encode_str(self.reject_message, 64, "reject_message"))

    @classmethod
    def unpack(cls, data: bytes) -> "ServiceReject":
        svc, text = _unpack(cls._FORMAT, data, "service reject")
        return cls(_service(svc), _decode_str(text))


@dataclass(frozen=True)
class ErrorInd:
    """Error indication, optionally quoting the offending message."""

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("!I64s")

    cause: int
    error_message: str = ""
    original_message: bytes = b""

    def pack(self) -> bytes:
        return _pack(self._FORMAT, self.cause,
                     _encode_str(self.error_message, 64, "error_message")) + bytes(self.original_message)

    @classmethod
    def unpack(cls, data: bytes) -> "ErrorInd":
        cause, text = _unpack(cls._FORMAT, data, "error indication", exact=False)
        return cls(cause, _decode_str(text), bytes(data[cls._FORMAT.size:]))


Body = Union[Echo, TdmData, ServiceRequest, RedirCmd, AuthRequest, AuthResponse,
             ServiceAck, ServiceReject, ErrorInd]

_TYPE_OF = {
    TdmData: E1oipMsgType.TDM_DATA,
    ServiceRequest: E1oipMsgType.SERVICE_REQ,
    ServiceAck: E1oipMsgType.SERVICE_ACK,
    ServiceReject: E1oipMsgType.SERVICE_REJ,
    RedirCmd: E1oipMsgType.REDIR_CMD,
    AuthRequest: E1oipMsgType.AUTH_REQ,
    AuthResponse: E1oipMsgType.AUTH_RESP,
    ErrorInd: E1oipMsgType.ERROR_IND,
}

_CLASS_OF = {msg_type: cls for cls, msg_type in _TYPE_OF.items()}


def encode_message(body: Body) -> bytes:
    """Encode a message body together with its header."""
    if isinstance(body, Echo):
        msg_type = E1oipMsgType.ECHO_RESP if body.reply else E1oipMsgType.ECHO_REQ
    else:
        try:
            msg_type = _TYPE_OF[type(body)]
        except KeyError:
            raise E1oipError(f"not an E1oIP message body: {type(body).__name__}") from None
    return E1oipHeader(msg_type).pack() + body.pack()


def decode_message(data: bytes) -> Tuple[E1oipHeader, Body]:
    """Decode a complete message into its header and body."""
    header = E1oipHeader.unpack(data)
    if header.version != VERSION:
        raise E1oipError(f"unsupported version {header.version}")
    payload = bytes(data[2:])
    if header.msg_type in (E1oipMsgType.ECHO_REQ, E1oipMsgType.ECHO_RESP):
        echo = Echo.unpack(payload)
        return header, dataclasses.replace(echo, reply=header.msg_type == E1oipMsgType.ECHO_RESP)
    cls = _CLASS_OF.get(header.msg_type)
    if cls is None:
        raise E1oipError(f"unknown message type {int(header.msg_type)}")
    return header, cls.unpack(payload)


class AccountMode(enum.IntEnum):
    NONE = 0
    ICE1USB = 1
    REDIRECT = 2
    DAHDI_TRUNKDEV = 3


@dataclass
class OctoiAccount:
    """A user account that connects over the OCTOI protocol."""

    user_id: str
    mode: AccountMode = AccountMode.NONE
    batching_factor: int = 0
    force_send_all_ts: bool = False
    prefill_frame_count: int = 0
    buffer_reset_percent: int = 0
    usb_serial: Optional[str] = None
    line_nr: int = 0
    redirect_to: Optional[Tuple[str, int]] = None
    trunkdev_name: Optional[str] = None

    def __post_init__(self) -> None:
        self.mode = AccountMode(self.mode)
        for name in ("batching_factor", "buffer_reset_percent", "line_nr"):
            if not 0 <= getattr(self, name) <= 0xFF:
                raise ValueError(f"{name} must be in 0..255")
        if not 0 <= self.prefill_frame_count <= 0xFFFFFFFF:
            raise ValueError("prefill_frame_count must fit in 32 bits")
        if self.redirect_to is not None and not 0 <= self.redirect_to[1] <= 0xFFFF:
            raise ValueError("redirect port must be in 0..65535")