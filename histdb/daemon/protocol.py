"""
histdb Daemon - Wire protocol.

Each connection carries exactly one request frame and one response
frame. A frame is a fixed header followed by a payload:

    +----------------+------------+---------------------+
    | length (u32be) | type (u8)  | payload (length B)  |
    +----------------+------------+---------------------+

The payload is a msgpack map holding the JSON-mode dump of a Request or
Response model. Requests are a tagged union discriminated by their
``kind`` field.
"""

from __future__ import annotations

import socket
import struct
import uuid
from datetime import datetime
from enum import IntEnum, StrEnum
from typing import Annotated, Literal, Union, get_args
from uuid import UUID

import msgpack
from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from histdb.core.entry import Entry, RunningEntry, utc_now
from histdb.core.exceptions import ProtocolError, ValidationError
from histdb.query.engine import QueryStats
from histdb.query.filters import QueryFilter

FRAME_HEADER = struct.Struct(">IB")
MAX_PAYLOAD_SIZE = 16 * 1024 * 1024


class FrameType(IntEnum):
    REQUEST = 1
    RESPONSE = 2


# =============================================================================
# Requests
# =============================================================================

class StartCommand(BaseModel):
    kind: Literal["start_command"] = "start_command"
    session_id: UUID
    command: str
    pwd: str
    hostname: str
    user: str = ""
    time_start: datetime = Field(default_factory=utc_now)


class FinishCommand(BaseModel):
    kind: Literal["finish_command"] = "finish_command"
    session_id: UUID
    result: int
    time_finished: datetime = Field(default_factory=utc_now)


class NewSession(BaseModel):
    kind: Literal["new_session"] = "new_session"


class Query(BaseModel):
    kind: Literal["query"] = "query"
    filter: QueryFilter = Field(default_factory=QueryFilter)


class CurrentlyRunning(BaseModel):
    kind: Literal["currently_running"] = "currently_running"
    session_id: UUID


class DisableSession(BaseModel):
    kind: Literal["disable_session"] = "disable_session"
    session_id: UUID


class EnableSession(BaseModel):
    kind: Literal["enable_session"] = "enable_session"
    session_id: UUID


class ListHosts(BaseModel):
    kind: Literal["list_hosts"] = "list_hosts"


class Ping(BaseModel):
    kind: Literal["ping"] = "ping"


class Stop(BaseModel):
    kind: Literal["stop"] = "stop"


Request = Annotated[
    Union[
        StartCommand,
        FinishCommand,
        NewSession,
        Query,
        CurrentlyRunning,
        DisableSession,
        EnableSession,
        ListHosts,
        Ping,
        Stop,
    ],
    Field(discriminator="kind"),
]

_request_adapter: TypeAdapter[Request] = TypeAdapter(Request)

REQUEST_KINDS = frozenset(
    model.model_fields["kind"].default for model in get_args(get_args(Request)[0])
)


# =============================================================================
# Responses
# =============================================================================

class ResponseStatus(StrEnum):
    OK = "ok"
    NOT_FOUND = "not_found"
    IGNORED = "ignored"
    DISABLED = "disabled"
    INVALID = "invalid"
    ERROR = "error"


class Response(BaseModel):
    """Reply to one request."""

    status: ResponseStatus = ResponseStatus.OK
    message: str = ""
    session_id: UUID | None = None
    entries: list[Entry] | None = None
    running: RunningEntry | None = None
    hosts: list[str] | None = None
    stats: QueryStats | None = None

    @property
    def ok(self) -> bool:
        return self.status == ResponseStatus.OK

    @classmethod
    def error(cls, message: str) -> Response:
        return cls(status=ResponseStatus.ERROR, message=message)


def new_session_id() -> UUID:
    return uuid.uuid4()


# =============================================================================
# Encoding
# =============================================================================

def encode_frame(frame_type: FrameType, payload: bytes) -> bytes:
    if len(payload) > MAX_PAYLOAD_SIZE:
        raise ProtocolError(
            f"Payload of {len(payload)} bytes exceeds the {MAX_PAYLOAD_SIZE} byte limit",
            {"size": len(payload), "limit": MAX_PAYLOAD_SIZE},
        )
    return FRAME_HEADER.pack(len(payload), frame_type) + payload


def _pack(message: BaseModel) -> bytes:
    return msgpack.packb(message.model_dump(mode="json"))


def _unpack(payload: bytes, what: str):
    try:
        return msgpack.unpackb(payload)
    except (ValueError, TypeError, msgpack.UnpackException) as e:
        raise ProtocolError(f"Malformed {what}: not a msgpack document ({e})") from e


def encode_request(request: Request) -> bytes:
    return encode_frame(FrameType.REQUEST, _pack(request))


def encode_response(response: Response) -> bytes:
    return encode_frame(FrameType.RESPONSE, _pack(response))


def decode_request(payload: bytes) -> Request:
    """
    Decode a request payload.

    Raises:
        ProtocolError: not a msgpack map, or an unknown ``kind``.
        ValidationError: a known request with missing or invalid fields.
    """
    data = _unpack(payload, "request")
    kind = data.get("kind") if isinstance(data, dict) else None
    if not isinstance(kind, str) or kind not in REQUEST_KINDS:
        raise ProtocolError(f"Malformed request: unknown kind {kind!r}")

    try:
        return _request_adapter.validate_python(data)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'][1:]) or 'request'}: {error['msg']}"
            for error in e.errors(include_url=False)
        )
        raise ValidationError(
            f"Invalid {kind} request: {problems}",
            {"errors": e.errors(include_url=False, include_context=False)},
        ) from e


def decode_response(payload: bytes) -> Response:
    data = _unpack(payload, "response")
    try:
        return Response.model_validate(data)
    except PydanticValidationError as e:
        raise ProtocolError(f"Malformed response: {e.error_count()} validation error(s)") from e


# =============================================================================
# Socket I/O
# =============================================================================

def _recv_exact(sock: socket.socket, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining:
        chunk = sock.recv(min(remaining, 65536))
        if not chunk:
            raise ProtocolError(
                "Connection closed before a complete frame was received",
                {"expected": size, "received": size - remaining},
            )
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def read_frame(sock: socket.socket, expected: FrameType) -> bytes:
    """
    Read one frame and return its payload.

    Raises:
        ProtocolError: truncated frame, wrong frame type or oversized payload.
    """
    length, frame_type = FRAME_HEADER.unpack(_recv_exact(sock, FRAME_HEADER.size))
    if frame_type != expected:
        raise ProtocolError(f"Unexpected frame type {frame_type}, expected {expected.value}")
    if length > MAX_PAYLOAD_SIZE:
        raise ProtocolError(
            f"Payload of {length} bytes exceeds the {MAX_PAYLOAD_SIZE} byte limit"
        )
    return _recv_exact(sock, length)


def read_request(sock: socket.socket) -> Request:
    return decode_request(read_frame(sock, FrameType.REQUEST))


def read_response(sock: socket.socket) -> Response:
    return decode_response(read_frame(sock, FrameType.RESPONSE))
