from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional

import yaml
from sqlalchemy.engine import URL, make_url


DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "tracestore.yaml"

DRIVER = "postgresql+psycopg"

AUTH_MODES = ("off", "api_key")

# database section keys -> libpq environment variables
_ENV_OVERRIDES = {
    "host": "PGHOST",
    "port": "PGPORT",
    "dbname": "PGDATABASE",
    "sslmode": "PGSSLMODE",
    "user": "PGUSER",
}


def _truthy(v: Any) -> bool:
    return str(v).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class TraceStoreConfig:
    raw: Dict[str, Any]

    def _database(self) -> Dict[str, Any]:
        db = self.raw.get("database", {}) if isinstance(self.raw, dict) else {}
        return dict(db or {})

    def db_host(self) -> str:
        return str(self._env_or("host", "127.0.0.1"))

    def db_port(self) -> int:
        return int(self._env_or("port", 5432))

    def db_name(self) -> str:
        return str(self._env_or("dbname", "pubsub_traces"))

    def db_sslmode(self) -> str:
        return str(self._env_or("sslmode", "prefer"))

    def db_user(self) -> str:
        return str(self._env_or("user", "postgres"))

    def db_password(self) -> str:
        # Never read from the yaml file.
        return os.getenv("PGPASSWORD", "")

    def _env_or(self, key: str, default: Any) -> Any:
        env = os.getenv(_ENV_OVERRIDES.get(key, ""), "")
        if env:
            return env
        return self._database().get(key, default)

    def database_url(self) -> URL:
        """
        Precedence: TRACESTORE_DATABASE_URL -> PG* env -> yaml -> defaults.
        """
        override = os.getenv("TRACESTORE_DATABASE_URL", "").strip()
        if override:
            return make_url(override)
        return URL.create(
            DRIVER,
            username=self.db_user(),
            password=self.db_password() or None,
            host=self.db_host(),
            port=self.db_port(),
            database=self.db_name(),
            query={"sslmode": self.db_sslmode()},
        )

    def pool_size(self) -> int:
        return int(self._database().get("pool_size", 5))

    def schema_on_startup(self) -> bool:
        env = os.getenv("TRACESTORE_SCHEMA_ON_STARTUP")
        if env is not None:
            return _truthy(env)
        return bool(self.raw.get("schema", {}).get("ensure_on_startup", True))

    def ingest_max_events(self) -> int:
        return int(self.raw.get("ingest", {}).get("max_events_per_request", 10000))

    def ingest_max_body_bytes(self) -> int:
        return int(self.raw.get("ingest", {}).get("max_body_bytes", 32 * 1024 * 1024))

    def auth_mode(self) -> str:
        env = os.getenv("TRACESTORE_AUTH_MODE", "").strip()
        if env:
            return env.lower()
        return str(self.raw.get("auth", {}).get("mode", "off")).strip().lower()

    def api_keys(self) -> FrozenSet[str]:
        # Keys come from the environment only, like the database password.
        raw = os.getenv("TRACESTORE_API_KEYS", "")
        return frozenset(k.strip() for k in raw.split(",") if k.strip())


_cached: Optional[TraceStoreConfig] = None


def load_config(path: Path | None = None) -> TraceStoreConfig:
    global _cached
    if _cached is not None and path is None:
        return _cached

    env_path = os.getenv("TRACESTORE_CONFIG", "").strip()
    p = path or (Path(env_path) if env_path else DEFAULT_CONFIG_PATH)
    data = yaml.safe_load(p.read_text(encoding="utf-8")) if p.exists() else {}
    cfg = TraceStoreConfig(raw=data or {})
    if path is None:
        _cached = cfg
    return cfg


def reset_config_cache() -> None:
    global _cached
    _cached = None
