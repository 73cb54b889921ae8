# services/event_defs.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from types import MappingProxyType
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple, Union

from models.trace_event import EventType, TraceEvent
from services.bulk_insert import FlatInsert, ParentChildInsert, Statement
from services.peer_id import peer_id_from_bytes, peer_id_from_bytes_lenient
from services.row_mapper import (
    ColumnKind,
    ColumnSpec,
    MappingReport,
    PeerIdDecoder,
    column_names,
    envelope_peer_id,
    envelope_timestamp,
    map_flat,
    map_parent_child,
)


Mapper = Callable[..., List[Any]]
Binding = Union[FlatInsert, ParentChildInsert]


@dataclass(frozen=True)
class EventDef:
    """
    Registry record for one persisted event type.

    - event_type: registry key
    - name: table name (parent table for parent-child types)
    - ddl: CREATE ... IF NOT EXISTS statements for the table(s) and indexes
    - payload_attr: TraceEvent attribute holding this type's sub-payload
    - columns: column layout of the (parent) table, in insert order
    - mapper: map_flat or map_parent_child
    - binding: turns the mapper's output into statements
    - decode_peer_id: peer identifier decoder used for every peer id column
    - child_columns / child_source: child layout (without the parent id column)
      and the payload attribute listing the child entries
    """
    event_type: EventType
    name: str
    ddl: str
    payload_attr: str
    columns: Tuple[ColumnSpec, ...]
    mapper: Mapper
    binding: Binding
    decode_peer_id: PeerIdDecoder = peer_id_from_bytes
    child_columns: Tuple[ColumnSpec, ...] = ()
    child_source: Optional[str] = None

    def map_rows(
        self,
        events: Sequence[TraceEvent],
        report: MappingReport,
        run_id: Optional[str] = None,
    ) -> List[Any]:
        return self.mapper(self, events, report, run_id)

    def statements(self, mapped: List[Any]) -> List[Statement]:
        return self.binding.statements(mapped)


def _flat(
    event_type: EventType,
    name: str,
    payload_attr: str,
    columns: Sequence[ColumnSpec],
    ddl: str,
) -> EventDef:
    cols = tuple(columns)
    return EventDef(
        event_type=event_type,
        name=name,
        ddl=ddl,
        payload_attr=payload_attr,
        columns=cols,
        mapper=map_flat,
        binding=FlatInsert(table=name, columns=column_names(cols)),
    )


def _topic(default: str = "") -> ColumnSpec:
    return ColumnSpec("topic", "topic", default=default)


def _message_id() -> ColumnSpec:
    return ColumnSpec("message_id", "message_id", ColumnKind.TEXT, default="")


def _received_from() -> ColumnSpec:
    return ColumnSpec("received_from", "received_from", ColumnKind.PEER_ID)


def _other_peer_id() -> ColumnSpec:
    return ColumnSpec("other_peer_id", "other_peer_id", ColumnKind.PEER_ID)


PUBLISH_MESSAGE = _flat(
    EventType.PUBLISH_MESSAGE,
    "publish_message_event",
    "publish_message",
    [envelope_peer_id(), envelope_timestamp(), _message_id(), _topic()],
    """
    CREATE TABLE IF NOT EXISTS publish_message_event (
        id               INT         GENERATED ALWAYS AS IDENTITY,
        peer_id          TEXT        NOT NULL,
        timestamp        TIMESTAMPTZ NOT NULL,
        message_id       TEXT        NOT NULL,
        topic            TEXT        NOT NULL,
        PRIMARY KEY (id)
    );

    CREATE INDEX IF NOT EXISTS idx_publish_message_event_timestamp ON publish_message_event (timestamp);
    CREATE INDEX IF NOT EXISTS idx_publish_message_event_peer_id   ON publish_message_event (peer_id);
    CREATE INDEX IF NOT EXISTS idx_publish_message_event_topic     ON publish_message_event USING hash (topic);
    """,
)

REJECT_MESSAGE = _flat(
    EventType.REJECT_MESSAGE,
    "reject_message_event",
    "reject_message",
    [
        envelope_peer_id(),
        envelope_timestamp(),
        _message_id(),
        _topic(),
        _received_from(),
        ColumnSpec("reason", "reason", default=""),
    ],
    """
    CREATE TABLE IF NOT EXISTS reject_message_event (
        id               INT         GENERATED ALWAYS AS IDENTITY,
        peer_id          TEXT        NOT NULL,
        timestamp        TIMESTAMPTZ NOT NULL,
        message_id       TEXT        NOT NULL,
        topic            TEXT        NOT NULL,
        received_from    TEXT        NOT NULL,
        reason           TEXT        NOT NULL,
        PRIMARY KEY (id)
    );

    CREATE INDEX IF NOT EXISTS idx_reject_message_event_timestamp     ON reject_message_event (timestamp);
    CREATE INDEX IF NOT EXISTS idx_reject_message_event_peer_id       ON reject_message_event (peer_id);
    CREATE INDEX IF NOT EXISTS idx_reject_message_event_topic         ON reject_message_event USING hash (topic);
    CREATE INDEX IF NOT EXISTS idx_reject_message_event_received_from ON reject_message_event (received_from);
    """,
)

DUPLICATE_MESSAGE = _flat(
    EventType.DUPLICATE_MESSAGE,
    "duplicate_message_event",
    "duplicate_message",
    [envelope_peer_id(), envelope_timestamp(), _message_id(), _topic(), _received_from()],
    """
    CREATE TABLE IF NOT EXISTS duplicate_message_event (
        id               INT         GENERATED ALWAYS AS IDENTITY,
        peer_id          TEXT        NOT NULL,
        timestamp        TIMESTAMPTZ NOT NULL,
        message_id       TEXT        NOT NULL,
        topic            TEXT        NOT NULL,
        received_from    TEXT        NOT NULL,
        PRIMARY KEY (id)
    );

    CREATE INDEX IF NOT EXISTS idx_duplicate_message_event_timestamp     ON duplicate_message_event (timestamp);
    CREATE INDEX IF NOT EXISTS idx_duplicate_message_event_peer_id       ON duplicate_message_event (peer_id);
    CREATE INDEX IF NOT EXISTS idx_duplicate_message_event_topic         ON duplicate_message_event USING hash (topic);
    CREATE INDEX IF NOT EXISTS idx_duplicate_message_event_received_from ON duplicate_message_event (received_from);
    """,
)

DELIVER_MESSAGE = _flat(
    EventType.DELIVER_MESSAGE,
    "deliver_message_event",
    "deliver_message",
    [envelope_peer_id(), envelope_timestamp(), _message_id(), _topic(), _received_from()],
    """
    CREATE TABLE IF NOT EXISTS deliver_message_event (
        id               INT         GENERATED ALWAYS AS IDENTITY,
        peer_id          TEXT        NOT NULL,
        timestamp        TIMESTAMPTZ NOT NULL,
        message_id       TEXT        NOT NULL,
        topic            TEXT        NOT NULL,
        received_from    TEXT        NOT NULL,
        PRIMARY KEY (id)
    );

    CREATE INDEX IF NOT EXISTS idx_deliver_message_event_timestamp     ON deliver_message_event (timestamp);
    CREATE INDEX IF NOT EXISTS idx_deliver_message_event_peer_id       ON deliver_message_event (peer_id);
    CREATE INDEX IF NOT EXISTS idx_deliver_message_event_topic         ON deliver_message_event USING hash (topic);
    CREATE INDEX IF NOT EXISTS idx_deliver_message_event_received_from ON deliver_message_event (received_from);
    """,
)

ADD_PEER = _flat(
    EventType.ADD_PEER,
    "add_peer_event",
    "add_peer",
    [
        envelope_peer_id(),
        envelope_timestamp(),
        _other_peer_id(),
        ColumnSpec("proto", "proto", default=""),
    ],
    """
    CREATE TABLE IF NOT EXISTS add_peer_event (
        id               INT         GENERATED ALWAYS AS IDENTITY,
        peer_id          TEXT        NOT NULL,
        timestamp        TIMESTAMPTZ NOT NULL,
        other_peer_id    TEXT        NOT NULL,
        proto            TEXT        NOT NULL,
        PRIMARY KEY (id)
    );

    CREATE INDEX IF NOT EXISTS idx_add_peer_event_timestamp     ON add_peer_event (timestamp);
    CREATE INDEX IF NOT EXISTS idx_add_peer_event_peer_id       ON add_peer_event (peer_id);
    CREATE INDEX IF NOT EXISTS idx_add_peer_event_other_peer_id ON add_peer_event (other_peer_id);
    """,
)

REMOVE_PEER = _flat(
    EventType.REMOVE_PEER,
    "remove_peer_event",
    "remove_peer",
    [envelope_peer_id(), envelope_timestamp(), _other_peer_id()],
    """
    CREATE TABLE IF NOT EXISTS remove_peer_event (
        id               INT         GENERATED ALWAYS AS IDENTITY,
        peer_id          TEXT        NOT NULL,
        timestamp        TIMESTAMPTZ NOT NULL,
        other_peer_id    TEXT        NOT NULL,
        PRIMARY KEY (id)
    );

    CREATE INDEX IF NOT EXISTS idx_remove_peer_event_timestamp     ON remove_peer_event (timestamp);
    CREATE INDEX IF NOT EXISTS idx_remove_peer_event_peer_id       ON remove_peer_event (peer_id);
    CREATE INDEX IF NOT EXISTS idx_remove_peer_event_other_peer_id ON remove_peer_event (other_peer_id);
    """,
)

JOIN = _flat(
    EventType.JOIN,
    "join_event",
    "join",
    [envelope_peer_id(), envelope_timestamp(), _topic()],
    """
    CREATE TABLE IF NOT EXISTS join_event (
        id               INT         GENERATED ALWAYS AS IDENTITY,
        peer_id          TEXT        NOT NULL,
        timestamp        TIMESTAMPTZ NOT NULL,
        topic            TEXT        NOT NULL,
        PRIMARY KEY (id)
    );

    CREATE INDEX IF NOT EXISTS idx_join_event_timestamp ON join_event (timestamp);
    CREATE INDEX IF NOT EXISTS idx_join_event_peer_id   ON join_event (peer_id);
    CREATE INDEX IF NOT EXISTS idx_join_event_topic     ON join_event USING hash (topic);
    """,
)

LEAVE = _flat(
    EventType.LEAVE,
    "leave_event",
    "leave",
    [envelope_peer_id(), envelope_timestamp(), _topic()],
    """
    CREATE TABLE IF NOT EXISTS leave_event (
        id               INT         GENERATED ALWAYS AS IDENTITY,
        peer_id          TEXT        NOT NULL,
        timestamp        TIMESTAMPTZ NOT NULL,
        topic            TEXT        NOT NULL,
        PRIMARY KEY (id)
    );

    CREATE INDEX IF NOT EXISTS idx_leave_event_timestamp ON leave_event (timestamp);
    CREATE INDEX IF NOT EXISTS idx_leave_event_peer_id   ON leave_event (peer_id);
    CREATE INDEX IF NOT EXISTS idx_leave_event_topic     ON leave_event USING hash (topic);
    """,
)

GRAFT = _flat(
    EventType.GRAFT,
    "graft_event",
    "graft",
    [envelope_peer_id(), envelope_timestamp(), _topic(), _other_peer_id()],
    """
    CREATE TABLE IF NOT EXISTS graft_event (
        id               INT         GENERATED ALWAYS AS IDENTITY,
        peer_id          TEXT        NOT NULL,
        timestamp        TIMESTAMPTZ NOT NULL,
        topic            TEXT        NOT NULL,
        other_peer_id    TEXT        NOT NULL,
        PRIMARY KEY (id)
    );

    CREATE INDEX IF NOT EXISTS idx_graft_event_timestamp     ON graft_event (timestamp);
    CREATE INDEX IF NOT EXISTS idx_graft_event_peer_id       ON graft_event (peer_id);
    CREATE INDEX IF NOT EXISTS idx_graft_event_topic         ON graft_event USING hash (topic);
    CREATE INDEX IF NOT EXISTS idx_graft_event_other_peer_id ON graft_event (other_peer_id);
    """,
)

PRUNE = _flat(
    EventType.PRUNE,
    "prune_event",
    "prune",
    [envelope_peer_id(), envelope_timestamp(), _topic(), _other_peer_id()],
    """
    CREATE TABLE IF NOT EXISTS prune_event (
        id               INT         GENERATED ALWAYS AS IDENTITY,
        peer_id          TEXT        NOT NULL,
        timestamp        TIMESTAMPTZ NOT NULL,
        topic            TEXT        NOT NULL,
        other_peer_id    TEXT        NOT NULL,
        PRIMARY KEY (id)
    );

    CREATE INDEX IF NOT EXISTS idx_prune_event_timestamp     ON prune_event (timestamp);
    CREATE INDEX IF NOT EXISTS idx_prune_event_peer_id       ON prune_event (peer_id);
    CREATE INDEX IF NOT EXISTS idx_prune_event_topic         ON prune_event USING hash (topic);
    CREATE INDEX IF NOT EXISTS idx_prune_event_other_peer_id ON prune_event (other_peer_id);
    """,
)


_PEER_SCORE_COLUMNS = (
    envelope_peer_id(),
    envelope_timestamp(),
    _other_peer_id(),
    ColumnSpec("app_specific_score", "app_specific_score", default=0.0),
    ColumnSpec("ip_colocation_factor", "ip_colocation_factor", default=0.0),
    ColumnSpec("behaviour_penalty", "behaviour_penalty", default=0.0),
)

_PEER_SCORE_TOPIC_COLUMNS = (
    _topic(),
    ColumnSpec("time_in_mesh", "time_in_mesh", ColumnKind.DURATION, default=timedelta(0)),
    ColumnSpec("first_message_deliveries", "first_message_deliveries", default=0.0),
    ColumnSpec("mesh_message_deliveries", "mesh_message_deliveries", default=0.0),
    ColumnSpec("invalid_message_deliveries", "invalid_message_deliveries", default=0.0),
)

PEER_SCORE = EventDef(
    event_type=EventType.PEER_SCORE,
    name="peer_score_event",
    ddl="""
    CREATE TABLE IF NOT EXISTS peer_score_event (
        id                    INT         GENERATED ALWAYS AS IDENTITY,
        peer_id               TEXT        NOT NULL,
        timestamp             TIMESTAMPTZ NOT NULL,
        other_peer_id         TEXT        NOT NULL,
        app_specific_score    FLOAT8      NOT NULL,
        ip_colocation_factor  FLOAT8      NOT NULL,
        behaviour_penalty     FLOAT8      NOT NULL,
        PRIMARY KEY (id)
    );

    CREATE INDEX IF NOT EXISTS idx_peer_score_event_timestamp     ON peer_score_event (timestamp);
    CREATE INDEX IF NOT EXISTS idx_peer_score_event_peer_id       ON peer_score_event (peer_id);
    CREATE INDEX IF NOT EXISTS idx_peer_score_event_other_peer_id ON peer_score_event (other_peer_id);

    CREATE TABLE IF NOT EXISTS peer_score_topic (
        id                          INT         GENERATED ALWAYS AS IDENTITY,
        peer_score_event_id         INT         NOT NULL,
        topic                       TEXT        NOT NULL,
        time_in_mesh                INTERVAL    NOT NULL,
        first_message_deliveries    FLOAT8      NOT NULL,
        mesh_message_deliveries     FLOAT8      NOT NULL,
        invalid_message_deliveries  FLOAT8      NOT NULL,
        PRIMARY KEY (id)
    );

    CREATE INDEX IF NOT EXISTS idx_peer_score_topic_peer_score_event_id ON peer_score_topic (peer_score_event_id);
    CREATE INDEX IF NOT EXISTS idx_peer_score_topic_topic               ON peer_score_topic USING hash (topic);
    """,
    payload_attr="peer_score",
    columns=_PEER_SCORE_COLUMNS,
    mapper=map_parent_child,
    binding=ParentChildInsert(
        parent_table="peer_score_event",
        parent_columns=column_names(_PEER_SCORE_COLUMNS),
        child_table="peer_score_topic",
        child_columns=("peer_score_event_id",) + column_names(_PEER_SCORE_TOPIC_COLUMNS),
    ),
    # Lotus encodes the pretty peer id into the byte field, see
    # https://github.com/filecoin-project/lotus/pull/10271
    decode_peer_id=peer_id_from_bytes_lenient,
    child_columns=_PEER_SCORE_TOPIC_COLUMNS,
    child_source="topics",
)


# Registry principle: new event types are added here once and picked up by the
# schema ensurer and the batch executor. Order is the statement order in a batch.
EVENT_DEFS: Tuple[EventDef, ...] = (
    PUBLISH_MESSAGE,
    REJECT_MESSAGE,
    DUPLICATE_MESSAGE,
    DELIVER_MESSAGE,
    ADD_PEER,
    REMOVE_PEER,
    JOIN,
    LEAVE,
    GRAFT,
    PRUNE,
    PEER_SCORE,
)

EVENT_REGISTRY: Mapping[EventType, EventDef] = MappingProxyType(
    {d.event_type: d for d in EVENT_DEFS}
)

if len(EVENT_REGISTRY) != len(EVENT_DEFS):
    raise RuntimeError("duplicate event type in EVENT_DEFS")


def lookup(event_type: EventType) -> Optional[EventDef]:
    """Registry lookup; None means the type is not persisted."""
    return EVENT_REGISTRY.get(event_type)


def registered_types() -> List[EventType]:
    return [d.event_type for d in EVENT_DEFS]
