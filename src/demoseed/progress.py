"""Import progress state shared between a running job and whoever polls it.

Each destination id has one ImportState. Writers only ever set individual
fields; readers may see a mix of old and new fields and are expected to poll
again.
"""
import dataclasses
import logging
import os
import threading
from dataclasses import dataclass
from typing import Dict, Optional

from . import timeutil

LOG = logging.getLogger("demoseed.progress")

REDIS_URL = os.getenv("REDIS_URL")
REDIS_KEY_PREFIX = os.getenv("PROGRESS_REDIS_PREFIX", "demoseed:import")


@dataclass(frozen=True)
class ImportState:
    total: Optional[int] = None
    progress: int = 0
    running: bool = False
    failed: Optional[str] = None
    succeeded: bool = False
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


FIELDS = tuple(f.name for f in dataclasses.fields(ImportState))


def _check_fields(fields: dict):
    unknown = set(fields) - set(FIELDS)
    if unknown:
        raise ValueError(f"unknown progress fields: {sorted(unknown)}")


class MemoryProgressStore:
    """In-process store; each update swaps in a new immutable snapshot."""

    def __init__(self):
        self._states: Dict[str, ImportState] = {}
        self._lock = threading.Lock()

    def get(self, destination: str) -> ImportState:
        return self._states.get(destination, ImportState())

    def update(self, destination: str, **fields) -> ImportState:
        _check_fields(fields)
        with self._lock:
            state = dataclasses.replace(self._states.get(destination, ImportState()), **fields)
            self._states[destination] = state
        return state

    def reset(self, destination: str) -> ImportState:
        with self._lock:
            self._states[destination] = ImportState()
        return self._states[destination]


class LocalProgressStore:
    """Store backed by the `import_progress` table (sqlite or duckdb)."""

    def __init__(self):
        from .db import init_db
        init_db()

    def _conn(self):
        from .db import get_conn
        return get_conn()

    def get(self, destination: str) -> ImportState:
        conn = self._conn()
        rows = conn.execute(
            "SELECT total, progress, running, failed, succeeded, started_at, finished_at FROM import_progress WHERE destination = ?",
            (destination,),
        ).fetchall()
        conn.close()
        if not rows:
            return ImportState()
        r = rows[0]
        return ImportState(
            total=r[0],
            progress=r[1] or 0,
            running=bool(r[2]),
            failed=r[3],
            succeeded=bool(r[4]),
            started_at=r[5],
            finished_at=r[6],
        )

    def update(self, destination: str, **fields) -> ImportState:
        _check_fields(fields)
        conn = self._conn()
        cur = conn.execute("SELECT 1 FROM import_progress WHERE destination = ?", (destination,)).fetchall()
        if not cur:
            conn.execute(
                "INSERT INTO import_progress VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (destination, None, 0, 0, None, 0, None, None),
            )
        for name, value in fields.items():
            if isinstance(value, bool):
                value = int(value)
            # column names come from FIELDS, never from callers
            conn.execute(f"UPDATE import_progress SET {name} = ? WHERE destination = ?", (value, destination))
        conn.commit()
        conn.close()
        return self.get(destination)

    def reset(self, destination: str) -> ImportState:
        conn = self._conn()
        conn.execute("DELETE FROM import_progress WHERE destination = ?", (destination,))
        conn.commit()
        conn.close()
        return ImportState()


class RedisProgressStore:
    """Store keeping one redis hash per destination, one hash field per state field."""

    def __init__(self, client=None):
        if client is None:
            import redis
            client = redis.Redis.from_url(REDIS_URL)
        self.r = client

    def _key(self, destination: str) -> str:
        return f"{REDIS_KEY_PREFIX}:{destination}"

    def get(self, destination: str) -> ImportState:
        raw = self.r.hgetall(self._key(destination)) or {}
        data = {}
        for k, v in raw.items():
            k = k.decode() if isinstance(k, bytes) else k
            v = v.decode() if isinstance(v, bytes) else v
            data[k] = v

        def _int(name, default):
            v = data.get(name, "")
            return int(v) if v not in ("", None) else default

        return ImportState(
            total=_int("total", None),
            progress=_int("progress", 0),
            running=data.get("running") == "1",
            failed=data.get("failed") or None,
            succeeded=data.get("succeeded") == "1",
            started_at=data.get("started_at") or None,
            finished_at=data.get("finished_at") or None,
        )

    def update(self, destination: str, **fields) -> ImportState:
        _check_fields(fields)
        mapping = {}
        for name, value in fields.items():
            if isinstance(value, bool):
                value = "1" if value else "0"
            elif value is None:
                value = ""
            mapping[name] = str(value)
        if mapping:
            self.r.hset(self._key(destination), mapping=mapping)
        return self.get(destination)

    def reset(self, destination: str) -> ImportState:
        self.r.delete(self._key(destination))
        return ImportState()


_memory_store = MemoryProgressStore()


def get_progress_store():
    backend = os.getenv("PROGRESS_BACKEND", "").lower()
    if backend == "memory":
        return _memory_store
    if REDIS_URL and backend in ("", "redis"):
        try:
            return RedisProgressStore()
        except Exception:
            LOG.exception("redis progress store unavailable; using local database")
    return LocalProgressStore()


def mark_started(store, destination: str) -> ImportState:
    store.reset(destination)
    return store.update(destination, running=True, started_at=timeutil.to_utc_iso())


def poll_progress(store, destination: str) -> dict:
    """Read progress the way the UI poller does.

    A recorded failure stops the run from looking busy and is reported with its
    message. Once progress reaches the total the run is marked succeeded.
    """
    state = store.get(destination)
    if state.failed:
        if state.running:
            store.update(destination, running=False)
        return {"success": False, "message": state.failed}

    if state.total is not None and state.progress >= state.total and not state.succeeded:
        state = store.update(destination, running=False, failed=None, succeeded=True)

    return {
        "success": True,
        "total": state.total,
        "progress": state.progress,
        "running": state.running,
        "succeeded": state.succeeded,
    }
