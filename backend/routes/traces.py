# backend/routes/traces.py

from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
import psycopg

from config.tracestore_config import load_config
from db import get_engine
from models.trace_event import TraceEvent
from schemas.ingest_result import IngestResult, TypeReport
from services.auth import require_api_key
from services.batch_executor import Batch, build_batch, submit_batch
from util.jsonlog import get_logger, log_event

logger = get_logger("traces")

router = APIRouter(prefix="/traces", tags=["traces"], dependencies=[Depends(require_api_key)])


def _serialize(batch: Batch, received: int, rows_written: int) -> IngestResult:
    return IngestResult(
        run_id=batch.run_id,
        received=received,
        unsupported=batch.unsupported,
        statements=len(batch.statements),
        rows_written=rows_written,
        reports=[
            TypeReport(
                event_type=et.key,
                attempted=r.attempted,
                inserted=r.inserted,
                dropped=r.dropped,
                reasons=dict(r.reasons),
            )
            for et, r in batch.reports.items()
        ],
    )


@router.post("", response_model=IngestResult)
def ingest_traces(events: List[TraceEvent], engine: Engine = Depends(get_engine)):
    # bounds the statements built for one cycle; body size is checked in main.py
    max_events = load_config().ingest_max_events()
    if len(events) > max_events:
        raise HTTPException(status_code=413, detail=f"at most {max_events} events per request")

    batch = build_batch(events)

    try:
        rowcounts = submit_batch(engine, batch)
    except (SQLAlchemyError, psycopg.Error) as e:
        log_event(
            logger,
            level="ERROR",
            event="ingest_failed",
            msg="batch submission failed",
            run_id=batch.run_id,
            statements=len(batch.statements),
            error={"type": type(e).__name__, "message": str(e)},
        )
        raise HTTPException(status_code=503, detail=f"database error: {type(e).__name__}")

    return _serialize(batch, received=len(events), rows_written=sum(r for r in rowcounts if r > 0))
