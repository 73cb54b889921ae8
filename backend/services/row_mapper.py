# services/row_mapper.py
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Sequence, Tuple

from models.trace_event import EventType, TraceEvent
from services.bulk_insert import PARENT_ID, Row
from services.errors import RowValidationSkip
from services.peer_id import PeerIDError
from util.jsonlog import get_logger, log_event
from util.time import duration_from_nanos, from_unix_nanos

if TYPE_CHECKING:
    from services.event_defs import EventDef

logger = get_logger("row_mapper")


class ColumnKind:
    VALUE = "value"
    TEXT = "text"            # raw bytes stored as TEXT
    PEER_ID = "peer_id"      # raw bytes decoded to the canonical peer id string
    TIMESTAMP = "timestamp"  # epoch nanoseconds -> TIMESTAMPTZ
    DURATION = "duration"    # nanoseconds -> INTERVAL


class _Required:
    def __repr__(self) -> str:
        return "REQUIRED"


REQUIRED: Any = _Required()


@dataclass(frozen=True)
class ColumnSpec:
    """
    One table column and where its value comes from.

    - name: column name in the table
    - source: attribute on the sub-payload (or on the envelope if envelope=True)
    - kind: one of ColumnKind
    - default: substituted when the source attribute is None; REQUIRED means
      the row is dropped instead
    """
    name: str
    source: str
    kind: str = ColumnKind.VALUE
    default: Any = REQUIRED
    envelope: bool = False


def envelope_peer_id() -> ColumnSpec:
    return ColumnSpec("peer_id", "peer_id", ColumnKind.PEER_ID, envelope=True)


def envelope_timestamp() -> ColumnSpec:
    return ColumnSpec("timestamp", "timestamp", ColumnKind.TIMESTAMP, envelope=True)


def column_names(specs: Sequence[ColumnSpec]) -> Tuple[str, ...]:
    return tuple(s.name for s in specs)


@dataclass
class MappingReport:
    event_type: EventType
    attempted: int = 0
    inserted: int = 0
    dropped: int = 0
    reasons: Counter = field(default_factory=Counter)

    def skip(self, reason: str) -> None:
        self.dropped += 1
        self.reasons[reason] += 1


PeerIdDecoder = Callable[[Optional[bytes]], str]


def _pg_text(s: str) -> str:
    # Postgres TEXT rejects NUL, which is valid UTF-8.
    return s.replace("\x00", "\\x00") if "\x00" in s else s


def _bytes_text(raw: bytes) -> str:
    # TEXT cannot hold arbitrary bytes; undecodable sequences are escaped.
    return _pg_text(bytes(raw).decode("utf-8", errors="backslashreplace"))


def _column_value(
    spec: ColumnSpec,
    event: TraceEvent,
    source_obj: Any,
    decode_peer_id: PeerIdDecoder,
) -> Any:
    obj = event if spec.envelope else source_obj
    raw = getattr(obj, spec.source)

    if spec.kind == ColumnKind.PEER_ID:
        try:
            return decode_peer_id(raw)
        except PeerIDError as e:
            raise RowValidationSkip(
                f"bad_{spec.name}",
                f"skipping event, bad {spec.name.replace('_', ' ')}",
                column=spec.name,
                raw=raw,
                error=str(e),
            ) from e

    if raw is None:
        if spec.default is REQUIRED:
            raise RowValidationSkip(
                f"missing_{spec.name}",
                f"skipping event, no {spec.name.replace('_', ' ')}",
                column=spec.name,
            )
        return spec.default

    if spec.kind == ColumnKind.TEXT:
        return _bytes_text(raw)
    if spec.kind in (ColumnKind.TIMESTAMP, ColumnKind.DURATION):
        convert = from_unix_nanos if spec.kind == ColumnKind.TIMESTAMP else duration_from_nanos
        try:
            return convert(raw)
        except OverflowError as e:
            raise RowValidationSkip(
                f"bad_{spec.name}",
                f"skipping event, {spec.name.replace('_', ' ')} out of range",
                column=spec.name,
                raw=raw,
                error=str(e),
            ) from e
    if isinstance(raw, str):
        return _pg_text(raw)
    return raw


def extract_row(
    specs: Sequence[ColumnSpec],
    event: TraceEvent,
    source_obj: Any,
    decode_peer_id: PeerIdDecoder,
) -> Row:
    return tuple(_column_value(s, event, source_obj, decode_peer_id) for s in specs)


def _eligible_payload(ev_def: "EventDef", event: TraceEvent) -> Any:
    # timestamp first, then the payload matching the declared type
    if event.timestamp is None:
        raise RowValidationSkip("missing_timestamp", "skipping event, no timestamp")
    payload = getattr(event, ev_def.payload_attr)
    if payload is None:
        raise RowValidationSkip(
            "missing_payload",
            f"skipping event, not a {ev_def.event_type.key.replace('_', ' ')} event",
            type=event.type.key,
        )
    return payload


def _log_skip(ev_def: "EventDef", skip: RowValidationSkip, run_id: Optional[str]) -> None:
    log_event(
        logger,
        level="DEBUG",
        event="trace_row_skipped",
        msg=skip.msg,
        run_id=run_id,
        event_type=ev_def.event_type.key,
        reason=skip.reason,
        **skip.fields,
    )


def map_flat(
    ev_def: "EventDef",
    events: Sequence[TraceEvent],
    report: MappingReport,
    run_id: Optional[str] = None,
) -> List[Row]:
    """One tuple per surviving event, in input order."""
    rows: List[Row] = []
    for ev in events:
        report.attempted += 1
        try:
            payload = _eligible_payload(ev_def, ev)
            row = extract_row(ev_def.columns, ev, payload, ev_def.decode_peer_id)
        except RowValidationSkip as skip:
            report.skip(skip.reason)
            _log_skip(ev_def, skip, run_id)
            continue
        rows.append(row)
        report.inserted += 1
    return rows


def map_parent_child(
    ev_def: "EventDef",
    events: Sequence[TraceEvent],
    report: MappingReport,
    run_id: Optional[str] = None,
) -> List[Tuple[Row, List[Row]]]:
    """
    One (parent, children) group per surviving event.

    Children come from the payload's child collection, one per entry, each
    prefixed with PARENT_ID for the foreign key column.
    """
    groups: List[Tuple[Row, List[Row]]] = []
    for ev in events:
        report.attempted += 1
        try:
            payload = _eligible_payload(ev_def, ev)
            parent = extract_row(ev_def.columns, ev, payload, ev_def.decode_peer_id)
            children = [
                (PARENT_ID,) + extract_row(ev_def.child_columns, ev, item, ev_def.decode_peer_id)
                for item in (getattr(payload, ev_def.child_source) or [])
            ]
        except RowValidationSkip as skip:
            report.skip(skip.reason)
            _log_skip(ev_def, skip, run_id)
            continue
        groups.append((parent, children))
        report.inserted += 1
    return groups
