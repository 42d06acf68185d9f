import os
import pathlib
import sqlite3

DATA_DIR_NAME = "data"


def _db_path(default_name: str) -> pathlib.Path:
    override = os.getenv("DEMOSEED_DB_PATH", "").strip()
    if override:
        path = pathlib.Path(override)
    else:
        path = pathlib.Path.cwd() / DATA_DIR_NAME / default_name
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def get_conn():
    """Return a DB connection according to DB_BACKEND env var.

    Supported backends: 'sqlite' (default), 'duckdb'. DEMOSEED_DB_PATH points
    both at a specific file; otherwise it lives under ./data in the working
    directory.
    """
    backend = os.getenv("DB_BACKEND", "sqlite").lower()
    if backend == "sqlite":
        return sqlite3.connect(str(_db_path("demoseed.sqlite")))
    elif backend == "duckdb":
        import duckdb
        return duckdb.connect(database=str(_db_path("demoseed.db")), read_only=False)
    else:
        raise ValueError(f"Unsupported DB_BACKEND: {backend}")


def init_db():
    conn = get_conn()

    # one row per destination; the poller reads it while a job writes it
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS import_progress (
            destination TEXT PRIMARY KEY,
            total INTEGER,
            progress INTEGER,
            running INTEGER,
            failed TEXT,
            succeeded INTEGER,
            started_at TEXT,
            finished_at TEXT
        )
        """
    )

    # demo audiences and pages the rewriter points events at
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS demo_objects (
            object_id INTEGER PRIMARY KEY,
            kind TEXT,
            marker TEXT,
            title TEXT,
            slug TEXT,
            url TEXT,
            config_json TEXT,
            created_at TEXT
        )
        """
    )

    conn.commit()
    conn.close()
