# models/trace_event.py
from __future__ import annotations

import base64
import binascii
import enum
from typing import Annotated, Any, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator


class EventType(str, enum.Enum):
    PUBLISH_MESSAGE = "publish_message"
    REJECT_MESSAGE = "reject_message"
    DUPLICATE_MESSAGE = "duplicate_message"
    DELIVER_MESSAGE = "deliver_message"
    ADD_PEER = "add_peer"
    REMOVE_PEER = "remove_peer"
    RECV_RPC = "recv_rpc"
    SEND_RPC = "send_rpc"
    DROP_RPC = "drop_rpc"
    JOIN = "join"
    LEAVE = "leave"
    GRAFT = "graft"
    PRUNE = "prune"
    PEER_SCORE = "peer_score"
    UNKNOWN = "unknown"

    @property
    def key(self) -> str:
        return self.value


# Numeric codes used by the pubsub tracers. 0..12 follow the libp2p pubsub
# trace format; peer scores are emitted with a tracer-specific code.
WIRE_CODES: dict[int, EventType] = {
    0: EventType.PUBLISH_MESSAGE,
    1: EventType.REJECT_MESSAGE,
    2: EventType.DUPLICATE_MESSAGE,
    3: EventType.DELIVER_MESSAGE,
    4: EventType.ADD_PEER,
    5: EventType.REMOVE_PEER,
    6: EventType.RECV_RPC,
    7: EventType.SEND_RPC,
    8: EventType.DROP_RPC,
    9: EventType.JOIN,
    10: EventType.LEAVE,
    11: EventType.GRAFT,
    12: EventType.PRUNE,
    100: EventType.PEER_SCORE,
}


def parse_event_type(v: Any) -> EventType:
    """
    Accepts an EventType, a wire code (int), the protobuf enum name
    ("PUBLISH_MESSAGE") or the key ("publish_message").
    Anything unrecognised becomes EventType.UNKNOWN.
    """
    if isinstance(v, EventType):
        return v
    if isinstance(v, bool):
        return EventType.UNKNOWN
    if isinstance(v, int):
        return WIRE_CODES.get(v, EventType.UNKNOWN)
    if isinstance(v, str):
        s = v.strip()
        if s.lstrip("-").isdigit():
            return WIRE_CODES.get(int(s), EventType.UNKNOWN)
        s = s.lower()
        if s == "peer_scores":
            return EventType.PEER_SCORE
        try:
            return EventType(s)
        except ValueError:
            return EventType.UNKNOWN
    return EventType.UNKNOWN


def _wire_bytes(v: Any) -> Any:
    # Byte fields arrive base64 encoded in JSON.
    if isinstance(v, str):
        try:
            return base64.b64decode(v, validate=True)
        except binascii.Error as e:
            raise ValueError(f"invalid base64 byte field: {e}") from e
    if isinstance(v, bytearray):
        return bytes(v)
    return v


WireBytes = Annotated[Optional[bytes], BeforeValidator(_wire_bytes)]


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PublishMessage(_Payload):
    message_id: WireBytes = Field(default=None, alias="messageID")
    topic: Optional[str] = None


class RejectMessage(_Payload):
    message_id: WireBytes = Field(default=None, alias="messageID")
    topic: Optional[str] = None
    received_from: WireBytes = Field(default=None, alias="receivedFrom")
    reason: Optional[str] = None


class DuplicateMessage(_Payload):
    message_id: WireBytes = Field(default=None, alias="messageID")
    topic: Optional[str] = None
    received_from: WireBytes = Field(default=None, alias="receivedFrom")


class DeliverMessage(_Payload):
    message_id: WireBytes = Field(default=None, alias="messageID")
    topic: Optional[str] = None
    received_from: WireBytes = Field(default=None, alias="receivedFrom")


class AddPeer(_Payload):
    other_peer_id: WireBytes = Field(default=None, alias="peerID")
    proto: Optional[str] = None


class RemovePeer(_Payload):
    other_peer_id: WireBytes = Field(default=None, alias="peerID")


class Join(_Payload):
    topic: Optional[str] = None


class Leave(_Payload):
    topic: Optional[str] = None


class Graft(_Payload):
    other_peer_id: WireBytes = Field(default=None, alias="peerID")
    topic: Optional[str] = None


class Prune(_Payload):
    other_peer_id: WireBytes = Field(default=None, alias="peerID")
    topic: Optional[str] = None


class TopicScore(_Payload):
    topic: str = ""
    # nanoseconds
    time_in_mesh: int = Field(default=0, alias="timeInMesh")
    first_message_deliveries: float = Field(default=0.0, alias="firstMessageDeliveries")
    mesh_message_deliveries: float = Field(default=0.0, alias="meshMessageDeliveries")
    invalid_message_deliveries: float = Field(default=0.0, alias="invalidMessageDeliveries")


class PeerScore(_Payload):
    other_peer_id: WireBytes = Field(default=None, alias="peerID")
    app_specific_score: float = Field(default=0.0, alias="appSpecificScore")
    ip_colocation_factor: float = Field(default=0.0, alias="ipColocationFactor")
    behaviour_penalty: float = Field(default=0.0, alias="behaviourPenalty")
    topics: List[TopicScore] = Field(default_factory=list)

    @field_validator("topics", mode="before")
    @classmethod
    def _null_topics(cls, v: Any) -> Any:
        return [] if v is None else v


class TraceEvent(BaseModel):
    """
    One decoded pubsub trace event.

    Exactly one sub-payload is expected to be set, the one matching `type`.
    Nothing here enforces that; the row mappers drop events whose declared
    payload is missing.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: EventType = EventType.UNKNOWN
    peer_id: WireBytes = Field(default=None, alias="peerID")
    # nanoseconds since the unix epoch
    timestamp: Optional[int] = None

    publish_message: Optional[PublishMessage] = Field(default=None, alias="publishMessage")
    reject_message: Optional[RejectMessage] = Field(default=None, alias="rejectMessage")
    duplicate_message: Optional[DuplicateMessage] = Field(default=None, alias="duplicateMessage")
    deliver_message: Optional[DeliverMessage] = Field(default=None, alias="deliverMessage")
    add_peer: Optional[AddPeer] = Field(default=None, alias="addPeer")
    remove_peer: Optional[RemovePeer] = Field(default=None, alias="removePeer")
    join: Optional[Join] = None
    leave: Optional[Leave] = None
    graft: Optional[Graft] = None
    prune: Optional[Prune] = None
    peer_score: Optional[PeerScore] = Field(default=None, alias="peerScore")

    @field_validator("type", mode="before")
    @classmethod
    def _parse_type(cls, v: Any) -> EventType:
        return parse_event_type(v)
