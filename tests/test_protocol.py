"""Tests for the wire protocol."""

from __future__ import annotations

import socket
import uuid

import msgpack
import pytest

from histdb.core.exceptions import ProtocolError, ValidationError
from histdb.daemon.protocol import (
    FRAME_HEADER,
    MAX_PAYLOAD_SIZE,
    FinishCommand,
    FrameType,
    Ping,
    Query,
    Response,
    ResponseStatus,
    StartCommand,
    decode_request,
    encode_frame,
    encode_request,
    encode_response,
    read_request,
    read_response,
)
from histdb.query.filters import QueryFilter

from .conftest import make_entry


@pytest.fixture
def pair():
    left, right = socket.socketpair()
    yield left, right
    left.close()
    right.close()


class TestRequests:
    """Tests for request encoding and decoding."""

    def test_tagged_union_dispatch(self) -> None:
        session_id = uuid.uuid4()
        request = StartCommand(
            session_id=session_id, command="ls", pwd="/", hostname="h", user="u"
        )
        frame = encode_request(request)
        decoded = decode_request(frame[FRAME_HEADER.size:])

        assert isinstance(decoded, StartCommand)
        assert decoded == request

    def test_query_carries_filter(self) -> None:
        request = Query(filter=QueryFilter(all_hosts=True, failed=True, limit=0))
        decoded = decode_request(encode_request(request)[FRAME_HEADER.size:])
        assert decoded.filter == request.filter

    def test_payload_is_msgpack(self) -> None:
        session_id = uuid.uuid4()
        frame = encode_request(FinishCommand(session_id=session_id, result=1))
        payload = msgpack.unpackb(frame[FRAME_HEADER.size:])
        assert payload["kind"] == "finish_command"
        assert payload["session_id"] == str(session_id)

    def test_unknown_kind(self) -> None:
        with pytest.raises(ProtocolError, match="Malformed request"):
            decode_request(msgpack.packb({"kind": "format_disk"}))

    def test_not_a_map(self) -> None:
        with pytest.raises(ProtocolError, match="Malformed request"):
            decode_request(msgpack.packb(["ping"]))

    def test_not_msgpack(self) -> None:
        with pytest.raises(ProtocolError):
            decode_request(b"\xc1\x00garbage")

    def test_missing_fields(self) -> None:
        with pytest.raises(ValidationError, match="Invalid finish_command request"):
            decode_request(msgpack.packb({"kind": "finish_command"}))

    def test_invalid_filter_names_the_field(self) -> None:
        payload = msgpack.packb({"kind": "query", "filter": {"include_regex": "("}})
        with pytest.raises(ValidationError, match="filter.include_regex"):
            decode_request(payload)


class TestFraming:
    """Tests for frames on a socket."""

    def test_request_over_socket(self, pair) -> None:
        left, right = pair
        request = FinishCommand(session_id=uuid.uuid4(), result=130)
        left.sendall(encode_request(request))
        assert read_request(right) == request

    def test_response_with_entries(self, pair) -> None:
        left, right = pair
        response = Response(entries=[make_entry(command="a\nb")], hosts=["host-a"])
        left.sendall(encode_response(response))

        decoded = read_response(right)
        assert decoded.ok
        assert decoded.entries == response.entries
        assert decoded.hosts == ["host-a"]

    def test_wrong_frame_type(self, pair) -> None:
        left, right = pair
        left.sendall(encode_response(Response()))
        with pytest.raises(ProtocolError, match="Unexpected frame type"):
            read_request(right)

    def test_truncated_frame(self, pair) -> None:
        left, right = pair
        frame = encode_request(Ping())
        left.sendall(frame[:-2])
        left.shutdown(socket.SHUT_WR)
        with pytest.raises(ProtocolError, match="Connection closed"):
            read_request(right)

    def test_oversized_length_refused(self, pair) -> None:
        left, right = pair
        left.sendall(FRAME_HEADER.pack(MAX_PAYLOAD_SIZE + 1, FrameType.REQUEST))
        with pytest.raises(ProtocolError, match="exceeds"):
            read_request(right)

    def test_oversized_payload_not_encoded(self) -> None:
        with pytest.raises(ProtocolError):
            encode_frame(FrameType.REQUEST, b"x" * (MAX_PAYLOAD_SIZE + 1))


class TestResponse:
    """Tests for Response helpers."""

    def test_error(self) -> None:
        response = Response.error("boom")
        assert response.status == ResponseStatus.ERROR
        assert not response.ok
        assert response.message == "boom"
