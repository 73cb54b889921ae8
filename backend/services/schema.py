# services/schema.py
from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from services.errors import SchemaError
from services.event_defs import EVENT_DEFS, EventDef
from util.jsonlog import get_logger, log_event

logger = get_logger("schema")


def ensure_schema(engine: Engine, defs: Optional[Iterable[EventDef]] = None) -> None:
    """
    Create every registered table and index in one transaction.

    All DDL uses IF NOT EXISTS, so running this against an initialised
    database changes nothing. Any failure rolls the whole transaction back
    and is raised as SchemaError with the driver error as __cause__.
    """
    log_event(logger, level="INFO", event="schema_ensure_start", msg="ensuring database schema exists")
    selected = list(EVENT_DEFS if defs is None else defs)

    try:
        # engine.begin(): commit on success, rollback on any exception
        with engine.begin() as conn:
            for ev_def in selected:
                key = ev_def.event_type.key
                if not ev_def.ddl.strip():
                    log_event(
                        logger,
                        level="DEBUG",
                        event="schema_skip",
                        msg="skipping event type, no ddl",
                        event_type=key,
                    )
                    continue

                log_event(
                    logger,
                    level="DEBUG",
                    event="schema_ensure_table",
                    msg="ensuring event type tables exist",
                    event_type=key,
                )
                try:
                    conn.exec_driver_sql(ev_def.ddl)
                except SQLAlchemyError as e:
                    raise SchemaError(f"exec ddl for {key}: {e}", event_type=key) from e
    except SchemaError as e:
        log_event(
            logger,
            level="ERROR",
            event="schema_ensure_failed",
            msg="schema transaction rolled back",
            event_type=e.event_type,
            error={"type": type(e.__cause__).__name__, "message": str(e)},
        )
        raise
    except SQLAlchemyError as e:
        # begin or commit failed
        log_event(
            logger,
            level="ERROR",
            event="schema_ensure_failed",
            msg="schema transaction failed",
            error={"type": type(e).__name__, "message": str(e)},
        )
        raise SchemaError(f"schema transaction: {e}") from e

    log_event(
        logger,
        level="INFO",
        event="schema_ensure_end",
        msg="database schema ensured",
        tables=len(selected),
    )
