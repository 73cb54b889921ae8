# backend/db.py
from __future__ import annotations

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from config.tracestore_config import TraceStoreConfig, load_config
from services.errors import DatabaseConnectionError
from services.schema import ensure_schema
from util.jsonlog import get_logger, log_event

logger = get_logger("db")

_engine: Optional[Engine] = None


def create_db_engine(cfg: TraceStoreConfig) -> Engine:
    return create_engine(
        cfg.database_url(),
        pool_size=cfg.pool_size(),
        pool_pre_ping=True,
    )


def connect(cfg: Optional[TraceStoreConfig] = None, *, ensure: bool = True) -> Engine:
    """
    Create the engine, check that the database answers, then ensure the schema.

    Raises DatabaseConnectionError if the database cannot be reached and
    SchemaError if the DDL fails. Neither is retried.
    """
    cfg = cfg or load_config()
    url = cfg.database_url()
    log_event(
        logger,
        level="INFO",
        event="db_connect",
        msg="connecting to database",
        host=url.host,
        port=url.port,
        dbname=url.database,
    )

    engine = create_db_engine(cfg)
    try:
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
    except SQLAlchemyError as e:
        engine.dispose()
        raise DatabaseConnectionError(f"connect {url.host}:{url.port}/{url.database}: {e}") from e

    if ensure:
        ensure_schema(engine)
    return engine


def init_engine(cfg: Optional[TraceStoreConfig] = None, *, ensure: bool = True) -> Engine:
    global _engine
    if _engine is None:
        _engine = connect(cfg, ensure=ensure)
    return _engine


def get_engine() -> Engine:
    """FastAPI dependency; the engine is created on startup."""
    if _engine is None:
        return init_engine()
    return _engine


def dispose_engine() -> None:
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None
