import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from ..config import get_clickhouse_config, get_http_timeout
from .. import timeutil
from .base import HttpDestination, register_destination

LOG = logging.getLogger("demoseed.destinations.columnar")

DEMOGRAPHIC_FIELDS = {
    "AppVersion": "demographic_app_version",
    "Locale": "demographic_locale",
    "Make": "demographic_make",
    "Model": "demographic_model",
    "ModelVersion": "demographic_model_version",
    "Platform": "demographic_platform",
    "PlatformVersion": "demographic_platform_version",
}

LOCATION_FIELDS = {
    "City": "location_city",
    "Country": "location_country",
    "Region": "location_region",
    "PostalCode": "location_postal_code",
    "Latitude": "location_latitude",
    "Longitude": "location_longitude",
}

# column name -> ClickHouse type, in table order
COLUMNS = [
    ("event_type", "LowCardinality(String)"),
    ("event_timestamp", "UInt64"),
    ("event_date", "Date"),
    ("session_id", "String"),
    ("endpoint_id", "String"),
    ("user_id", "String"),
    ("blog_id", "String"),
    ("network_id", "String"),
    ("url", "String"),
] + [(col, "String") for col in DEMOGRAPHIC_FIELDS.values()] + [
    (col, "Float64" if col in ("location_latitude", "location_longitude") else "String")
    for col in LOCATION_FIELDS.values()
] + [
    ("attributes", "Map(String, String)"),
    ("endpoint_attributes", "Map(String, String)"),
    ("user_attributes", "Map(String, String)"),
    ("metrics", "Map(String, Float64)"),
]

NUMERIC_COLUMNS = {name for name, kind in COLUMNS if kind in ("UInt64", "Float64")}

# attributes hoisted into their own columns
HOISTED_ATTRIBUTES = {"session": "session_id", "blogId": "blog_id", "networkId": "network_id", "url": "url"}


def first_value(value: Any) -> Any:
    """Collapse a multi-valued field to its first entry."""
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def _string_map(values: Optional[dict]) -> Dict[str, str]:
    out = {}
    for k, v in (values or {}).items():
        v = first_value(v)
        if v is None:
            continue
        if isinstance(v, (dict, list)):
            v = json.dumps(v, separators=(",", ":"))
        out[str(k)] = str(v)
    return out


def _float_map(values: Optional[dict]) -> Dict[str, float]:
    out = {}
    for k, v in (values or {}).items():
        try:
            out[str(k)] = float(first_value(v))
        except (TypeError, ValueError):
            continue
    return out


def transcode_row(line: str) -> Dict[str, Any]:
    """Flatten one nested event record into a row of the COLUMNS schema.

    Raises ValueError when the line is not a JSON object.
    """
    record = json.loads(line)
    if not isinstance(record, dict):
        raise ValueError("event record is not a JSON object")

    attributes = dict(record.get("attributes") or {})
    endpoint = record.get("endpoint") or {}
    demographic = endpoint.get("Demographic") or {}
    location = endpoint.get("Location") or {}
    user = endpoint.get("User") or {}

    timestamp = int(first_value(record.get("event_timestamp")) or 0)
    row: Dict[str, Any] = {
        "event_type": str(first_value(record.get("event_type")) or ""),
        "event_timestamp": timestamp,
        "event_date": timeutil.ms_to_index_date(timestamp),
        "endpoint_id": str(first_value(endpoint.get("Id")) or ""),
        "user_id": str(first_value(user.get("UserId")) or ""),
    }

    for attr, column in HOISTED_ATTRIBUTES.items():
        row[column] = str(first_value(attributes.pop(attr, "")) or "")

    for source, column in DEMOGRAPHIC_FIELDS.items():
        row[column] = str(first_value(demographic.get(source)) or "")

    for source, column in LOCATION_FIELDS.items():
        value = first_value(location.get(source))
        if column in NUMERIC_COLUMNS:
            try:
                row[column] = float(value)
            except (TypeError, ValueError):
                row[column] = 0.0
        else:
            row[column] = str(value or "")

    row["attributes"] = _string_map(attributes)
    row["endpoint_attributes"] = _string_map(endpoint.get("Attributes"))
    row["user_attributes"] = _string_map(user.get("UserAttributes"))
    row["metrics"] = _float_map(record.get("metrics"))
    return row


def create_table_sql(table: str) -> str:
    cols = ",\n    ".join(f"{name} {kind}" for name, kind in COLUMNS)
    return (
        f"CREATE TABLE IF NOT EXISTS {table} (\n    {cols}\n) "
        "ENGINE = MergeTree PARTITION BY event_date ORDER BY (event_date, event_timestamp)"
    )


@register_destination("clickhouse")
class ColumnarRowSink(HttpDestination):
    """Inserts flattened rows through the ClickHouse HTTP interface."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        table: Optional[str] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        timeout: Optional[float] = None,
        client=None,
    ):
        config = get_clickhouse_config()
        user = user if user is not None else config["user"]
        password = password if password is not None else config["password"]
        super().__init__(
            base_url or config["url"],
            timeout=timeout if timeout is not None else get_http_timeout(),
            client=client,
            auth=httpx.BasicAuth(user, password) if user else None,
        )
        self.table = table or config["table"]

    async def prepare(self, window: Tuple[int, int]) -> None:
        await self._request("POST", "", content=create_table_sql(self.table))
        LOG.info("ensured table %s", self.table)

    def build_payload(self, batch: Sequence[str]) -> str:
        rows: List[str] = []
        for line in batch:
            try:
                row = transcode_row(line)
            except ValueError:
                LOG.warning("dropping line that is not a JSON event record")
                continue
            rows.append(json.dumps(row, separators=(",", ":")))
        return "\n".join(rows) + "\n" if rows else ""

    async def send(self, batch: Sequence[str]) -> None:
        payload = self.build_payload(batch)
        if not payload:
            return
        await self._request(
            "POST",
            "",
            params={"query": f"INSERT INTO {self.table} FORMAT JSONEachRow"},
            content=payload,
            headers={"Content-Type": "application/x-ndjson"},
        )
