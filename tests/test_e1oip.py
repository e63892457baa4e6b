import pytest

from e1ctl.e1oip import (
    VERSION,
    AccountMode,
    AuthRequest,
    AuthResponse,
    E1oipError,
    E1oipHeader,
    E1oipMsgType,
    E1oipService,
    Echo,
    ErrorInd,
    OctoiAccount,
    RedirCmd,
    ServiceAck,
    ServiceReject,
    ServiceRequest,
    TdmData,
    decode_message,
    encode_message,
)


def test_header_wire_bytes():
    hdr = E1oipHeader(E1oipMsgType.TDM_DATA, version=1, flags=2)
    assert hdr.pack() == b"\x21\x02"


def test_header_round_trip():
    hdr = E1oipHeader(E1oipMsgType.AUTH_RESP, version=VERSION, flags=0xF)
    assert E1oipHeader.unpack(hdr.pack()) == hdr


def test_header_flags_out_of_range():
    with pytest.raises(E1oipError):
        E1oipHeader(E1oipMsgType.ECHO_REQ, flags=0x10).pack()


def test_echo_reply_round_trip():
    body = Echo(7, b"hello", reply=True)
    header, back = decode_message(encode_message(body))
    assert header.msg_type == E1oipMsgType.ECHO_RESP
    assert back == body


def test_echo_request_type():
    header, back = decode_message(encode_message(Echo(1)))
    assert header.msg_type == E1oipMsgType.ECHO_REQ
    assert back.reply is False


def test_active_timeslots():
    tdm = TdmData(0, 0b1010 | (1 << 31), b"")
    assert tdm.active_timeslots() == [1, 3, 31]


def test_tdm_round_trip():
    tdm = TdmData(0xFFFF, 0x0000FFFE, bytes(range(15)))
    assert TdmData.unpack(tdm.pack()) == tdm
    assert decode_message(encode_message(tdm))[1] == tdm


def test_service_request_round_trip():
    req = ServiceRequest(E1oipService.E1_FRAMED, "001010000000001", "e1ctl", "1.0", 3)
    back = ServiceRequest.unpack(req.pack())
    assert back == req
    assert back.requested_service is E1oipService.E1_FRAMED


def test_service_request_string_too_long():
    with pytest.raises(E1oipError):
        ServiceRequest(E1oipService.NONE, software_version="x" * 17).pack()


def test_redirect_round_trip():
    cmd = RedirCmd("2001:db8::1", 9999)
    assert decode_message(encode_message(cmd))[1] == cmd


def test_auth_request_round_trip():
    req = AuthRequest(bytes(range(16)), b"\x01\x02")
    assert AuthRequest.unpack(req.pack()) == req


def test_auth_request_rand_too_long():
    with pytest.raises(E1oipError):
        AuthRequest(bytes(17)).pack()


def test_auth_response_outcomes():
    assert AuthResponse(res=b"\x01" * 8).outcome() == "success"
    assert AuthResponse(auts=b"\x02" * 14).outcome() == "resync"
    assert AuthResponse().outcome() == "failure"
    with pytest.raises(E1oipError):
        AuthResponse(b"\x01", b"\x02").outcome()


def test_auth_response_round_trip():
    resp = AuthResponse(auts=b"\xaa" * 14)
    assert decode_message(encode_message(resp))[1] == resp


def test_service_ack_and_reject_round_trip():
    ack = ServiceAck(E1oipService.E1_FRAMED, "srv", "e1ctl", "2.0", 1)
    rej = ServiceReject(E1oipService.E1_FRAMED, "no such subscriber")
    assert decode_message(encode_message(ack))[1] == ack
    assert decode_message(encode_message(rej))[1] == rej


def test_error_ind_round_trip():
    err = ErrorInd(5, "bad message", b"\x21\x63")
    assert decode_message(encode_message(err))[1] == err


def test_decode_wrong_version():
    data = E1oipHeader(E1oipMsgType.ECHO_REQ, version=2).pack() + Echo(1).pack()
    with pytest.raises(E1oipError):
        decode_message(data)


def test_decode_unknown_type():
    with pytest.raises(E1oipError):
        decode_message(E1oipHeader(0x42).pack())


def test_decode_truncated():
    with pytest.raises(E1oipError):
        decode_message(b"\x01")
    with pytest.raises(E1oipError):
        decode_message(E1oipHeader(E1oipMsgType.SERVICE_REQ).pack() + b"\x00" * 10)


def test_account_validation():
    acc = OctoiAccount("001010000000001", mode=1, batching_factor=32)
    assert acc.mode is AccountMode.ICE1USB
    with pytest.raises(ValueError):
        OctoiAccount("001010000000001", batching_factor=256)
    with pytest.raises(ValueError):
        OctoiAccount("001010000000001", redirect_to=("192.0.2.1", 70000))