import json
import logging
import re
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from ..config import PACKAGE_DATA, get_elasticsearch_url, get_http_timeout
from ..errors import DeliveryError
from .. import timeutil
from .base import HttpDestination, register_destination

LOG = logging.getLogger("demoseed.destinations.elastic")

INDEX_PREFIX = "analytics-"
EVENT_TIMESTAMP_RE = re.compile(r'"event_timestamp":(\d+)')


def index_name_for(ms: int) -> str:
    return INDEX_PREFIX + timeutil.ms_to_index_date(ms)


def load_mapping(major_version: int, data_dir: Path = PACKAGE_DATA) -> str:
    name = "mapping.json" if major_version >= 7 else "mapping-6.json"
    return (data_dir / name).read_text()


@register_destination("elasticsearch")
class ElasticBulkSink(HttpDestination):
    """Writes batches through the Elasticsearch `_bulk` API.

    Each document is routed to the daily `analytics-YYYY-MM-DD` index matching
    its rewritten event timestamp. 6.x clusters get the `record` mapping type.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None, client=None, major_version: Optional[int] = None):
        super().__init__(
            base_url or get_elasticsearch_url(),
            timeout=timeout if timeout is not None else get_http_timeout(),
            client=client,
        )
        self.major_version = major_version
        self._fallback_ms = None

    async def detect_version(self) -> int:
        try:
            r = await self._request("GET", "")
            number = r.json()["version"]["number"]
            return int(str(number).split(".")[0])
        except (DeliveryError, KeyError, ValueError, TypeError):
            LOG.warning("could not detect elasticsearch version at %s; assuming 7", self.base_url)
            return 7

    async def prepare(self, window: Tuple[int, int]) -> None:
        if self.major_version is None:
            self.major_version = await self.detect_version()
        mapping = load_mapping(self.major_version)
        min_ms, max_ms = window
        self._fallback_ms = max_ms
        for day in timeutil.index_dates(min_ms, max_ms):
            index = INDEX_PREFIX + day
            try:
                await self._request("PUT", index, content=mapping, headers={"Content-Type": "application/json"})
                LOG.info("created index %s", index)
            except DeliveryError as e:
                # usually resource_already_exists_exception
                LOG.debug("index %s not created: %s", index, e)

    def _action(self, line: str) -> str:
        m = EVENT_TIMESTAMP_RE.search(line)
        if m:
            ms = int(m.group(1))
        elif self._fallback_ms is not None:
            ms = self._fallback_ms
        else:
            ms = int(timeutil.now_utc().timestamp() * 1000)
        meta = {"_index": index_name_for(ms)}
        if self.major_version is not None and self.major_version < 7:
            meta["_type"] = "record"
        return json.dumps({"index": meta}, separators=(",", ":"))

    def build_payload(self, batch: Sequence[str]) -> str:
        parts: List[str] = []
        for line in batch:
            line = line.rstrip("\r\n")
            parts.append(self._action(line))
            parts.append(line)
        # bulk bodies must end with a newline
        return "\n".join(parts) + "\n"

    async def send(self, batch: Sequence[str]) -> None:
        if not batch:
            return
        r = await self._request(
            "POST",
            "_bulk",
            content=self.build_payload(batch),
            headers={"Content-Type": "application/x-ndjson"},
        )
        try:
            body = r.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and body.get("errors"):
            LOG.warning("bulk request accepted with item errors (%s documents)", len(batch))
