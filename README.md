# e1ctl

`e1ctl` speaks the control protocol of an E1 line daemon over a UNIX
domain `SOCK_SEQPACKET` socket, and encodes and decodes E1-over-IP
(OCTOI) messages. It uses only the standard library and needs Python 3.10
or newer. Passing file descriptors relies on `SCM_RIGHTS`, so the client
and server run on Linux and similar POSIX systems.

## Modules

- `e1ctl.protocol` – the control wire format. `MsgType`, `LineMode` and
  `TsMode` enumerate message types and modes; `MsgHeader` and `Message`
  pack and unpack messages; `IntfInfo`, `LineConfig`, `LineInfo`,
  `TsConfig` and `TsInfo` are the records exchanged with the daemon;
  `unpack_array` decodes a run of records. `build_message`,
  `send_message` and `recv_message` create, send and receive messages,
  carrying an optional file descriptor. Malformed data raises
  `ProtocolError`. Constants include `INVALID` (0xff, "any/none" in an
  address field) and `DEFAULT_SOCKET` (`/tmp/osmo-e1d.ctl`).
- `e1ctl.client` – `E1dClient`, a blocking client.
- `e1ctl.server` – `E1dServer`, the listening side, with `Handler`,
  `Reply`, `ServerFlag` and `HandlerError`.
- `e1ctl.e1oip` – E1-over-IP message bodies (`Echo`, `TdmData`,
  `ServiceRequest`, `ServiceAck`, `ServiceReject`, `RedirCmd`,
  `AuthRequest`, `AuthResponse`, `ErrorInd`), `E1oipHeader`,
  `encode_message` / `decode_message`, and the `OctoiAccount` settings
  record with its `AccountMode`.

## Installing

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Client

```python
from e1ctl.client import E1dClient, ClientError
from e1ctl.protocol import INVALID, LineMode, TsMode

with E1dClient("/tmp/osmo-e1d.ctl") as client:
    for info in client.intf_query(INVALID):        # all interfaces
        print(info.id, info.n_lines)

    line = client.line_config(0, 0, LineMode.CHANNELIZED)   # returns LineInfo
    client.set_sa_bits(0, 0, 0x1F)
    fd = client.ts_open(0, 0, 1, TsMode.RAW, 160)  # fd carrying the timeslot
```

`E1dClient()` with no path connects to `DEFAULT_SOCKET`. `line_query` and
`ts_query` return lists of `LineInfo` and `TsInfo`. `ts_open_force` opens a
timeslot even when another client holds it.

Events the daemon sends go to the callable set with
`register_event_handler`, called as `callback(event, intf, line, ts, data)`.
They are dispatched while a request waits for its reply, or by
`handle_readable()` once `fileno()` is readable; `handle_readable` returns
the event message.

Every failure raises `ClientError`. When the daemon answers with an error
response, the error number is in its `code` attribute.

## Server

```python
from e1ctl.protocol import IntfInfo, MsgType
from e1ctl.server import E1dServer, Handler, HandlerError, ServerFlag

def intf_query(handler_data, request):
    if request.intf not in (0, 0xFF):
        raise HandlerError(2)
    return IntfInfo(id=0, n_lines=1).pack()

handlers = [Handler(MsgType.CMD_INTF_QUERY, ServerFlag.INTF_OPT, 0, intf_query)]

with E1dServer("/tmp/e1d-test.ctl", handlers) as server:
    while True:
        server.poll(1.0)
```

A `Handler` gives the message type, the `ServerFlag` bits saying which of
interface, line and timeslot may (`*_OPT`) or must (`*_REQ`) be set, and
the exact payload length (`None` or a negative number for any length). Its
function is called as `fn(handler_data, request)` and returns payload
bytes, `None` for an empty reply, or a `Reply(payload, fd)` to pass a
file descriptor along. Raising `HandlerError(code)` sends an error
response. A request with an unknown type, unsuitable addressing or a wrong
payload length makes the server drop that connection.

`poll(timeout)` accepts new clients and serves pending requests, returning
how many sockets it serviced; `accept` and `handle_request` do the same
step by step. `send_event(event, intf, line, ts, data)` broadcasts an event
to all clients, and `connection_count()` tells how many are connected.

## E1-over-IP messages

```python
from e1ctl.e1oip import Echo, TdmData, encode_message, decode_message

wire = encode_message(Echo(seq_nr=7, data=b"ping"))
header, body = decode_message(wire)

tdm = TdmData(frame_nr=1, ts_mask=0b110, data=b"\x01\x02")
tdm.active_timeslots()   # [1, 2]
```

`AuthResponse.outcome()` returns `"success"`, `"resync"` or `"failure"`.
Malformed data raises `E1oipError`.

## What this package does not do

It contains no E1 daemon: there is no driver for E1 hardware, no line or
timeslot multiplexing, and no configuration shell. `E1dServer` only
dispatches requests to the handlers you supply. The E1-over-IP module
encodes and decodes messages but opens no UDP sockets and runs no OCTOI
client or server; `OctoiAccount` only holds and checks settings.