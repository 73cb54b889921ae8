import base64
from contextlib import contextmanager

import base58
import pytest

from models.trace_event import TraceEvent

# 2024-01-02T03:04:05.123456789Z
TS_NS = 1704164645123456789


def peer_id_bytes(seed: int) -> bytes:
    """sha2-256 multihash with a deterministic digest."""
    return bytes([0x12, 0x20]) + bytes((seed + i) % 256 for i in range(32))


def peer_id_str(seed: int) -> str:
    return base58.b58encode(peer_id_bytes(seed)).decode("ascii")


def b64_peer_id_bytes(seed: int) -> bytes:
    # what a tracer produces when it stores an already encoded id in a byte field
    return base64.b64encode(peer_id_bytes(seed))


def make_event(event_type, ts=TS_NS, peer=1, **payload) -> TraceEvent:
    return TraceEvent(
        type=event_type,
        peer_id=peer_id_bytes(peer) if isinstance(peer, int) else peer,
        timestamp=ts,
        **payload,
    )


class FakeConnection:
    def __init__(self, engine):
        self.engine = engine
        self.executed = []

    def exec_driver_sql(self, sql, params=None):
        if self.engine.fail_on is not None and self.engine.fail_on in sql:
            raise self.engine.error
        self.executed.append(sql)
        self.engine.apply(sql)


class FakeEngine:
    """
    Minimal stand-in for sqlalchemy Engine.begin().

    Tracks which objects a CREATE ... IF NOT EXISTS would have created, so
    repeated runs can be compared structurally.
    """

    def __init__(self, fail_on=None, error=None):
        self.fail_on = fail_on
        self.error = error
        self.objects = set()
        self.commits = 0
        self.rollbacks = 0
        self.connections = []
        self._pending = set()

    def apply(self, sql):
        for line in sql.splitlines():
            words = line.split()
            if words[:5] == ["CREATE", "TABLE", "IF", "NOT", "EXISTS"]:
                self._pending.add(("table", words[5]))
            elif words[:5] == ["CREATE", "INDEX", "IF", "NOT", "EXISTS"]:
                self._pending.add(("index", words[5]))

    @contextmanager
    def begin(self):
        conn = FakeConnection(self)
        self.connections.append(conn)
        self._pending = set()
        try:
            yield conn
        except Exception:
            self.rollbacks += 1
            self._pending = set()
            raise
        self.commits += 1
        self.objects |= self._pending


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "TRACESTORE_AUTH_MODE",
        "TRACESTORE_API_KEYS",
        "TRACESTORE_DATABASE_URL",
        "TRACESTORE_CONFIG",
        "TRACESTORE_SCHEMA_ON_STARTUP",
        "PGHOST",
        "PGPORT",
        "PGDATABASE",
        "PGSSLMODE",
        "PGUSER",
        "PGPASSWORD",
    ):
        monkeypatch.delenv(name, raising=False)
    from config.tracestore_config import reset_config_cache

    reset_config_cache()
    yield
    reset_config_cache()
