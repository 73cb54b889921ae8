import re

import pytest

from models.trace_event import EventType
from services.bulk_insert import FlatInsert, ParentChildInsert
from services.event_defs import EVENT_DEFS, EVENT_REGISTRY, lookup, registered_types


def _ddl_columns(ddl: str, table: str) -> list[str]:
    body = re.search(
        r"CREATE TABLE IF NOT EXISTS " + table + r" \((.*?)\);", ddl, re.S
    ).group(1)
    cols = []
    for line in body.splitlines():
        words = line.split()
        if not words or words[0] in ("id", "PRIMARY"):
            continue
        cols.append(words[0])
    return cols


def test_registry_has_one_entry_per_persisted_type():
    assert len(EVENT_DEFS) == 11
    assert set(EVENT_REGISTRY) == set(registered_types())
    assert len(set(d.name for d in EVENT_DEFS)) == len(EVENT_DEFS)


@pytest.mark.parametrize(
    "event_type",
    [EventType.RECV_RPC, EventType.SEND_RPC, EventType.DROP_RPC, EventType.UNKNOWN],
)
def test_unregistered_types_are_absent(event_type):
    assert lookup(event_type) is None


def test_registry_is_read_only():
    with pytest.raises(TypeError):
        EVENT_REGISTRY[EventType.RECV_RPC] = EVENT_DEFS[0]


@pytest.mark.parametrize("ev_def", EVENT_DEFS, ids=lambda d: d.event_type.key)
def test_ddl_is_idempotent_and_matches_columns(ev_def):
    ddl = ev_def.ddl

    # every statement is create-if-absent
    statements = [s.strip() for s in ddl.split(";") if s.strip()]
    assert statements
    for s in statements:
        assert s.startswith("CREATE TABLE IF NOT EXISTS") or s.startswith("CREATE INDEX IF NOT EXISTS")

    # insert column order equals table column order
    assert _ddl_columns(ddl, ev_def.name) == [c.name for c in ev_def.columns]

    # timestamp and peer_id are always indexed
    assert f"idx_{ev_def.name}_timestamp" in ddl
    assert f"idx_{ev_def.name}_peer_id" in ddl


@pytest.mark.parametrize("ev_def", EVENT_DEFS, ids=lambda d: d.event_type.key)
def test_secondary_ids_and_topic_are_indexed(ev_def):
    names = [c.name for c in ev_def.columns]
    if "topic" in names:
        assert f"ON {ev_def.name} USING hash (topic)" in ev_def.ddl
    for col in ("received_from", "other_peer_id"):
        if col in names:
            assert f"idx_{ev_def.name}_{col}" in ev_def.ddl


def test_only_peer_score_is_parent_child():
    for ev_def in EVENT_DEFS:
        if ev_def.event_type is EventType.PEER_SCORE:
            assert isinstance(ev_def.binding, ParentChildInsert)
        else:
            assert isinstance(ev_def.binding, FlatInsert)
            assert ev_def.binding.table == ev_def.name


def test_peer_score_child_table_layout():
    ev_def = lookup(EventType.PEER_SCORE)
    binding = ev_def.binding

    assert binding.child_table == "peer_score_topic"
    assert binding.child_columns[0] == "peer_score_event_id"
    assert list(binding.child_columns) == _ddl_columns(ev_def.ddl, "peer_score_topic")
    assert "idx_peer_score_topic_peer_score_event_id" in ev_def.ddl
