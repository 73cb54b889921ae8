# models package init
# Trace event types are importable from a single place.
from models.trace_event import EventType, TraceEvent  # noqa: F401
from models.trace_event import (  # noqa: F401
    AddPeer,
    DeliverMessage,
    DuplicateMessage,
    Graft,
    Join,
    Leave,
    PeerScore,
    PublishMessage,
    Prune,
    RejectMessage,
    RemovePeer,
    TopicScore,
)
