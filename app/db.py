# app/db.py
from __future__ import annotations
import os
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, TypeVar

from dotenv import load_dotenv
import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

load_dotenv()

T = TypeVar("T")

SQL_DIR = os.getenv(
    "CWF_SQL_DIR",
    os.path.join(os.path.dirname(__file__), "..", "sql"),
)


# ----------------------------
# Config / PG connection pool
# ----------------------------
def build_dsn() -> str:
    dsn = os.getenv("PG_DSN")
    if dsn:
        return dsn
    host = os.getenv("DB_HOST", "localhost")
    port = os.getenv("DB_PORT", "5432")
    user = os.getenv("DB_USER", "postgres")
    password = os.getenv("DB_PASSWORD")  # required if server enforces password
    dbname = os.getenv("DB_NAME", "cwf")
    if password:
        return f"postgresql://{user}:{password}@{host}:{port}/{dbname}"
    return f"dbname={dbname} user={user} host={host} port={port}"


_pool: ConnectionPool | None = None


def get_pool() -> ConnectionPool:
    global _pool
    if _pool is None:
        _pool = ConnectionPool(
            build_dsn(), min_size=1, max_size=10,
            timeout=10,  # wait up to 10s for a conn
            kwargs={"connect_timeout": 5, "autocommit": True, "row_factory": dict_row},
        )
    return _pool


def connect() -> psycopg.Connection:
    """Standalone autocommit connection for scripts."""
    return psycopg.connect(build_dsn(), autocommit=True, row_factory=dict_row)


# ----------------------------
# Load & split SQL file
# ----------------------------
class SqlBundle(dict):
    """Named queries from a `-- name:` delimited file; also readable as attributes."""

    def __getattr__(self, name: str) -> str:
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name) from None


def load_sql_bundle(path: str, required: Iterable[str] = ()) -> SqlBundle:
    if not os.path.isabs(path) and not os.path.exists(path):
        path = os.path.join(SQL_DIR, path)
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()

    parts: Dict[str, str] = {}
    current_name = None
    buf: List[str] = []
    for line in text.splitlines():
        if line.strip().lower().startswith("-- name:"):
            if current_name and buf:
                parts[current_name] = "\n".join(buf).strip()
            buf = []
            current_name = line.split(":", 1)[1].strip()
        elif current_name:
            buf.append(line)
    if current_name and buf:
        parts[current_name] = "\n".join(buf).strip()

    missing = [n for n in required if n not in parts]
    if missing:
        raise RuntimeError(f"{os.path.basename(path)} is missing queries: {', '.join(missing)}")

    return SqlBundle(parts)


# ----------------------------
# Query helpers
# ----------------------------
def fetch_all(conn: psycopg.Connection, query: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(query, params)  # type: ignore[arg-type]
        return list(cur.fetchall())


def fetch_one(conn: psycopg.Connection, query: str, params: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(query, params)  # type: ignore[arg-type]
        return cur.fetchone()


def execute(conn: psycopg.Connection, query: str, params: Optional[Mapping[str, Any]] = None) -> int:
    with conn.cursor() as cur:
        cur.execute(query, params)  # type: ignore[arg-type]
        return cur.rowcount


def safe_db(query: Callable[[], T], fallback: T, label: str, log: logging.Logger) -> T:
    """Run one dashboard query; a failure is logged and replaced by `fallback`."""
    try:
        result = query()
    except (psycopg.Error, OSError) as ex:
        log.error(f"database error label={label}: {ex}")
        return fallback
    return fallback if result is None else result
