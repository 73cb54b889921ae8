from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any

from util.time import utc_iso, utcnow

# Deny-list of keys that should never be logged raw.
_DENY_KEYS = {
    "password",
    "secret",
    "token",
    "dsn",
    "database_url",
    "authorization",
    "x-api-key",
    "api_key",
    "api_keys",
}

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def _configured_level() -> int:
    name = os.getenv("TRACESTORE_LOG_LEVEL", "INFO").strip().upper()
    return _LEVELS.get(name, logging.INFO)


def get_logger(component: str) -> logging.Logger:
    """
    Logger that writes message-only JSONL lines to stdout.

    Handlers are attached once per component and propagation is switched off,
    so lines are not duplicated by a root handler.
    """
    logger = logging.getLogger(component)
    if not logger.handlers:
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(h)
        logger.setLevel(_configured_level())
        logger.propagate = False
    return logger


def _truncate_str(s: str, max_len: int = 800) -> str:
    return s if len(s) <= max_len else s[:max_len] + "...<truncated>"


def _sanitize_value(v: Any, depth: int = 0, max_depth: int = 3) -> Any:
    if depth > max_depth:
        return "<max_depth>"

    if v is None or isinstance(v, (int, float, bool)):
        return v

    if isinstance(v, str):
        return _truncate_str(v)

    if isinstance(v, (bytes, bytearray)):
        return _truncate_str(bytes(v).hex())

    if isinstance(v, (list, tuple)):
        return [_sanitize_value(x, depth + 1, max_depth) for x in list(v)[:50]]

    if isinstance(v, dict):
        out: dict[str, Any] = {}
        for k, vv in v.items():
            if str(k).lower() in _DENY_KEYS:
                out[str(k)] = "<redacted>"
            else:
                out[str(k)] = _sanitize_value(vv, depth + 1, max_depth)
        return out

    return _truncate_str(str(v))


def log_event(
    logger: logging.Logger,
    *,
    level: str,
    event: str,
    msg: str,
    run_id: str | None = None,
    **fields: Any,
) -> None:
    lvl = _LEVELS.get((level or "").upper(), logging.INFO)
    if not logger.isEnabledFor(lvl):
        return

    payload: dict[str, Any] = {
        "ts": utc_iso(utcnow()),
        "level": logging.getLevelName(lvl),
        "component": logger.name,
        "event": event,
        "msg": msg,
    }
    if run_id is not None:
        payload["run_id"] = run_id

    for k, v in fields.items():
        if str(k).lower() in _DENY_KEYS:
            payload[k] = "<redacted>"
            continue
        payload[k] = _sanitize_value(v)

    logger.log(lvl, json.dumps(payload, ensure_ascii=False, separators=(",", ":")))
