# services/auth.py
from __future__ import annotations

import hmac
from typing import FrozenSet

from fastapi import Header, HTTPException, status

from config.tracestore_config import AUTH_MODES, load_config


def _key_matches(candidate: str, keys: FrozenSet[str]) -> bool:
    # compare against every key so timing does not depend on which one matched
    matched = False
    for key in keys:
        if hmac.compare_digest(candidate.encode("utf-8"), key.encode("utf-8")):
            matched = True
    return matched


def _checked_keys(mode: str) -> FrozenSet[str]:
    if mode not in AUTH_MODES:
        raise RuntimeError(f"Unknown TRACESTORE_AUTH_MODE: {mode!r}")
    keys = load_config().api_keys()
    if mode == "api_key" and not keys:
        raise RuntimeError("TRACESTORE_API_KEYS must be set when TRACESTORE_AUTH_MODE=api_key")
    return keys


def require_api_key(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> None:
    """
    Router dependency for POST /traces.

    - auth mode "off": every tracer may write
    - auth mode "api_key": X-API-Key must equal one of TRACESTORE_API_KEYS
    """
    mode = load_config().auth_mode()
    keys = _checked_keys(mode)
    if mode == "off":
        return

    if not x_api_key or not _key_matches(x_api_key, keys):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


def validate_auth_config_on_startup() -> None:
    """Fail fast on invalid auth configuration."""
    _checked_keys(load_config().auth_mode())
