import os
import shutil
import socket
import tempfile

import pytest

from e1ctl.client import ClientError, E1dClient
from e1ctl.protocol import (
    INVALID,
    TS_OPEN_F_FORCE,
    IntfInfo,
    LineConfig,
    LineInfo,
    LineMode,
    MsgType,
    TsConfig,
    TsInfo,
    TsMode,
    build_message,
    recv_message,
    send_message,
)


@pytest.fixture
def pair():
    client_sock, server_sock = socket.socketpair(socket.AF_UNIX, socket.SOCK_SEQPACKET)
    client = E1dClient(sock=client_sock)
    yield client, server_sock, client_sock
    client.close()
    server_sock.close()


def respond(server, msg_type, payload=b"", intf=INVALID, line=INVALID, ts=INVALID, fd=None):
    send_message(server, build_message(int(msg_type) | 0x80, intf, line, ts, payload), fd)


def event(server, msg_type, intf=0, line=0, ts=0, payload=b""):
    send_message(server, build_message(msg_type, intf, line, ts, payload))


def read_request(server):
    message, fd = recv_message(server)
    assert fd is None
    return message


def test_intf_query_wire_bytes(pair):
    client, server, _ = pair
    respond(server, MsgType.CMD_INTF_QUERY)
    assert client.intf_query(3) == []
    assert server.recv(4096) == b"\xe1\x01\x08\x00\x00\x03\xff\xff"


def test_intf_query_parses_records(pair):
    client, server, _ = pair
    infos = [IntfInfo(0, 2), IntfInfo(1, 4)]
    respond(server, MsgType.CMD_INTF_QUERY, b"".join(i.pack() for i in infos))
    assert client.intf_query() == infos
    req = read_request(server)
    assert (req.msg_type, req.intf, req.line, req.ts) == (MsgType.CMD_INTF_QUERY, INVALID, INVALID, INVALID)


def test_line_query_ignores_partial_record(pair):
    client, server, _ = pair
    info = LineInfo(1, LineConfig(LineMode.CHANNELIZED), 0)
    respond(server, MsgType.CMD_LINE_QUERY, info.pack() + b"\x00")
    assert client.line_query(0) == [info]
    req = read_request(server)
    assert (req.intf, req.line, req.ts) == (0, INVALID, INVALID)


def test_ts_query(pair):
    client, server, _ = pair
    infos = [TsInfo(1, TsConfig(TsMode.RAW, 0, 160)), TsInfo(2, TsConfig(TsMode.HDLCFCS, 0, 264))]
    respond(server, MsgType.CMD_TS_QUERY, b"".join(i.pack() for i in infos))
    assert client.ts_query(0, 1, 2) == infos
    req = read_request(server)
    assert (req.msg_type, req.intf, req.line, req.ts) == (MsgType.CMD_TS_QUERY, 0, 1, 2)


def test_events_before_response_are_dispatched(pair):
    client, server, _ = pair
    seen = []
    client.register_event_handler(lambda *args: seen.append(args))
    event(server, MsgType.EVT_LOS_ON, 0, 1, 0)
    event(server, MsgType.EVT_SABITS, 0, 1, 0, b"\x5a")
    respond(server, MsgType.CMD_INTF_QUERY, IntfInfo(0, 1).pack())
    assert client.intf_query() == [IntfInfo(0, 1)]
    assert seen == [
        (MsgType.EVT_LOS_ON, 0, 1, 0, b""),
        (MsgType.EVT_SABITS, 0, 1, 0, b"\x5a"),
    ]


def test_events_without_handler_are_dropped(pair):
    client, server, _ = pair
    event(server, MsgType.EVT_AIS_ON)
    respond(server, MsgType.CMD_INTF_QUERY, IntfInfo(7, 1).pack())
    assert client.intf_query(7) == [IntfInfo(7, 1)]


def test_wrong_response_type(pair):
    client, server, _ = pair
    respond(server, MsgType.CMD_LINE_QUERY)
    with pytest.raises(ClientError):
        client.intf_query()


def test_error_response_carries_code(pair):
    client, server, _ = pair
    send_message(server, build_message(0xC0 | 5))
    with pytest.raises(ClientError) as info:
        client.line_query(0)
    assert info.value.code == 5


def test_line_config(pair):
    client, server, _ = pair
    info = LineInfo(1, LineConfig(LineMode.SUPERCHANNEL))
    respond(server, MsgType.CMD_LINE_CONFIG, info.pack())
    assert client.line_config(0, 1, LineMode.SUPERCHANNEL) == info
    req = read_request(server)
    assert req.payload == LineConfig(LineMode.SUPERCHANNEL).pack()
    assert (req.intf, req.line, req.ts) == (0, 1, INVALID)


def test_line_config_wrong_size(pair):
    client, server, _ = pair
    respond(server, MsgType.CMD_LINE_CONFIG, b"")
    with pytest.raises(ClientError):
        client.line_config(0, 1, LineMode.CHANNELIZED)


def test_set_sa_bits(pair):
    client, server, _ = pair
    respond(server, MsgType.CMD_SABITS)
    client.set_sa_bits(0, 1, 0x1F)
    req = read_request(server)
    assert (req.msg_type, req.payload) == (MsgType.CMD_SABITS, b"\x1f")


def test_set_sa_bits_rejects_payload(pair):
    client, server, _ = pair
    respond(server, MsgType.CMD_SABITS, b"\x00")
    with pytest.raises(ClientError):
        client.set_sa_bits(0, 1, 0)


@pytest.mark.parametrize("force, flags", [(False, 0), (True, TS_OPEN_F_FORCE)])
def test_ts_open_passes_descriptor(pair, force, flags):
    client, server, _ = pair
    read_end, write_end = os.pipe()
    try:
        respond(server, MsgType.CMD_TS_OPEN, TsInfo(5, TsConfig(TsMode.RAW, flags, 160)).pack(),
                fd=write_end)
        opener = client.ts_open_force if force else client.ts_open
        fd = opener(0, 0, 5, TsMode.RAW, 160)
        try:
            os.write(fd, b"x")
            assert os.read(read_end, 1) == b"x"
        finally:
            os.close(fd)
        req = read_request(server)
        assert TsConfig.unpack(req.payload) == TsConfig(TsMode.RAW, flags, 160)
        assert req.ts == 5
    finally:
        os.close(read_end)
        os.close(write_end)


def test_ts_open_without_descriptor(pair):
    client, server, _ = pair
    respond(server, MsgType.CMD_TS_OPEN, TsInfo(5).pack())
    with pytest.raises(ClientError):
        client.ts_open(0, 0, 5, TsMode.RAW, 160)


def test_blocking_mode_restored(pair):
    client, server, client_sock = pair
    client_sock.setblocking(False)
    respond(server, MsgType.CMD_INTF_QUERY)
    assert client.intf_query() == []
    assert client_sock.getblocking() is False


def test_peer_closed_during_query(pair):
    client, server, _ = pair
    server.close()
    with pytest.raises(ClientError):
        client.intf_query()


def test_handle_readable_dispatches_event(pair):
    client, server, _ = pair
    seen = []
    client.register_event_handler(lambda *args: seen.append(args))
    event(server, MsgType.EVT_LOF_OFF, 1, 2, 0)
    message = client.handle_readable()
    assert message.msg_type == MsgType.EVT_LOF_OFF
    assert seen == [(MsgType.EVT_LOF_OFF, 1, 2, 0, b"")]


def test_handle_readable_rejects_response(pair):
    client, server, _ = pair
    respond(server, MsgType.CMD_INTF_QUERY)
    with pytest.raises(ClientError):
        client.handle_readable()


def test_handle_readable_on_lost_connection_closes(pair):
    client, server, _ = pair
    server.close()
    with pytest.raises(ClientError):
        client.handle_readable()
    with pytest.raises(ClientError):
        client.fileno()


def test_context_manager_closes(pair):
    _, _, client_sock = pair
    with E1dClient(sock=client_sock) as client:
        assert client.fileno() == client_sock.fileno()
    with pytest.raises(ClientError):
        client.fileno()


def test_connect_by_path():
    directory = tempfile.mkdtemp()
    path = os.path.join(directory, "ctl")
    listener = socket.socket(socket.AF_UNIX, socket.SOCK_SEQPACKET)
    try:
        listener.bind(path)
        listener.listen(1)
        with E1dClient(path) as client:
            conn, _ = listener.accept()
            with conn:
                respond(conn, MsgType.CMD_INTF_QUERY, IntfInfo(0, 1).pack())
                assert client.intf_query() == [IntfInfo(0, 1)]
    finally:
        listener.close()
        shutil.rmtree(directory)


def test_connect_to_missing_path():
    directory = tempfile.mkdtemp()
    try:
        with pytest.raises(ClientError):
            E1dClient(os.path.join(directory, "absent"))
    finally:
        shutil.rmtree(directory)