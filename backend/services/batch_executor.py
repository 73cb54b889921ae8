# services/batch_executor.py
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from psycopg import RawCursor
from sqlalchemy.engine import Engine

from models.trace_event import EventType, TraceEvent
from services.event_defs import EVENT_DEFS
from services.row_mapper import MappingReport
from util.jsonlog import get_logger, log_event

logger = get_logger("batch_executor")


@dataclass(frozen=True)
class QueuedStatement:
    event_type: EventType
    sql: str
    params: Tuple[Any, ...]


@dataclass
class Batch:
    """
    Statements for one ingestion cycle, submitted together in one round trip.

    reports holds one MappingReport per event type that had input events,
    including types whose events were all dropped.
    """
    run_id: str
    statements: List[QueuedStatement] = field(default_factory=list)
    reports: Dict[EventType, MappingReport] = field(default_factory=dict)
    unsupported: int = 0

    def queue(self, event_type: EventType, sql: str, params: Tuple[Any, ...]) -> None:
        self.statements.append(QueuedStatement(event_type=event_type, sql=sql, params=params))

    def __len__(self) -> int:
        return len(self.statements)


def _group_by_type(events: Sequence[TraceEvent]) -> Dict[EventType, List[TraceEvent]]:
    grouped: Dict[EventType, List[TraceEvent]] = {}
    for ev in events:
        grouped.setdefault(ev.type, []).append(ev)
    return grouped


def build_batch(events: Sequence[TraceEvent], run_id: Optional[str] = None) -> Batch:
    """
    Map and queue one ingestion cycle.

    Events are grouped by their declared type and handed to that type's
    mapper only. Types without a registry entry are counted in
    batch.unsupported and otherwise ignored. Types whose eligible set ends up
    empty queue nothing.
    """
    batch = Batch(run_id=run_id or str(uuid.uuid4()))
    grouped = _group_by_type(events)

    for ev_def in EVENT_DEFS:
        evs = grouped.pop(ev_def.event_type, None)
        if not evs:
            continue

        report = MappingReport(event_type=ev_def.event_type)
        batch.reports[ev_def.event_type] = report

        mapped = ev_def.map_rows(evs, report, batch.run_id)
        if not mapped:
            continue

        for sql, params in ev_def.statements(mapped):
            batch.queue(ev_def.event_type, sql, params)

    # whatever is left has no registry entry
    for event_type, evs in grouped.items():
        batch.unsupported += len(evs)
        log_event(
            logger,
            level="DEBUG",
            event="trace_type_unsupported",
            msg="skipping events, no event definition",
            run_id=batch.run_id,
            event_type=event_type.key,
            count=len(evs),
        )

    log_event(
        logger,
        level="DEBUG",
        event="batch_built",
        msg="batch built",
        run_id=batch.run_id,
        events=len(events),
        statements=len(batch.statements),
        unsupported=batch.unsupported,
        dropped={et.key: r.dropped for et, r in batch.reports.items() if r.dropped},
    )
    return batch


def submit_batch(engine: Engine, batch: Batch) -> List[int]:
    """
    Execute all queued statements in one transaction, pipelined.

    Statements use native $n placeholders, so they go through a RawCursor on
    the psycopg connection underneath the SQLAlchemy connection. Returns the
    row count of each statement, in queue order. Errors propagate after the
    transaction is rolled back.
    """
    if not batch.statements:
        return []

    t0 = time.monotonic()
    with engine.begin() as conn:
        pg = conn.connection.driver_connection
        cursors: List[RawCursor] = []
        with pg.pipeline():
            for stmt in batch.statements:
                cur = RawCursor(pg)
                cur.execute(stmt.sql, stmt.params)
                cursors.append(cur)
        rowcounts = [cur.rowcount for cur in cursors]
        for cur in cursors:
            cur.close()

    log_event(
        logger,
        level="INFO",
        event="batch_submitted",
        msg="batch submitted",
        run_id=batch.run_id,
        statements=len(batch.statements),
        rows=sum(r for r in rowcounts if r > 0),
        duration_ms=int((time.monotonic() - t0) * 1000),
    )
    return rowcounts
