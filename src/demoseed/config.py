import os
from pathlib import Path

PACKAGE_DATA = Path(__file__).resolve().parent / "data"

DEFAULT_BATCH_SIZE = 400
DEFAULT_SLEEP = 5
DEFAULT_TIME_RANGE = 7
DEFAULT_DESTINATION = "elasticsearch"
DEFAULT_HTTP_TIMEOUT = 60.0

# values offered by the trigger surface
TIME_RANGES = (7, 14)


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def get_events_log_path() -> str:
    path = os.getenv("DEMOSEED_EVENTS_LOG", "").strip()
    if not path:
        path = str(PACKAGE_DATA / "events.log")
    return path


def get_batch_size() -> int:
    return max(1, _int_env("DEMOSEED_BATCH_SIZE", DEFAULT_BATCH_SIZE))


def get_sleep_seconds() -> int:
    return max(0, _int_env("DEMOSEED_SLEEP", DEFAULT_SLEEP))


def get_time_range() -> int:
    return max(1, _int_env("DEMOSEED_TIME_RANGE", DEFAULT_TIME_RANGE))


def get_destination_id() -> str:
    return os.getenv("DEMOSEED_DESTINATION", DEFAULT_DESTINATION).strip().lower() or DEFAULT_DESTINATION


def get_http_timeout() -> float:
    return _float_env("DEMOSEED_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT)


def get_home_url() -> str:
    return os.getenv("DEMOSEED_HOME_URL", "http://localhost").rstrip("/")


def get_blog_id() -> str:
    return os.getenv("DEMOSEED_BLOG_ID", "1")


def get_network_id() -> str:
    return os.getenv("DEMOSEED_NETWORK_ID", "1")


def get_elasticsearch_url() -> str:
    return os.getenv("ELASTICSEARCH_URL", "http://localhost:9200").rstrip("/")


def get_clickhouse_config() -> dict:
    return {
        "url": os.getenv("CLICKHOUSE_URL", "http://localhost:8123").rstrip("/"),
        "user": os.getenv("CLICKHOUSE_USER", "default"),
        "password": os.getenv("CLICKHOUSE_PASSWORD", ""),
        "table": os.getenv("CLICKHOUSE_TABLE", "analytics_events"),
    }
