"""Replay the demo event log into a destination.

The file is read twice: once to count lines for progress reporting, then line
by line. Every line with a session key is rewritten with that session's
synthetic identity and batched; each full batch is sent, progress is recorded
and the job sleeps before continuing so the backend is not flooded.
"""
import asyncio
import datetime
import logging
import random
import time
from typing import Dict, Optional

from . import config
from . import metrics
from .batcher import Batcher
from .demo_content import setup_demo_content
from .destinations.base import Destination, get_destination
from .errors import ImportCancelled, SourceUnavailable
from .progress import ImportState, get_progress_store, mark_started
from .rewriter import RewriteContext, build_context, extract_session_key, rewrite_line
from .sessions import SessionState
from . import timeutil

LOG = logging.getLogger("demoseed.job")


def count_lines(handle) -> int:
    return sum(1 for _ in handle)


class ImportJob:
    def __init__(
        self,
        destination: Destination,
        source_path: str,
        context: RewriteContext,
        destination_id: Optional[str] = None,
        store=None,
        time_range: int = config.DEFAULT_TIME_RANGE,
        batch_size: int = config.DEFAULT_BATCH_SIZE,
        sleep_seconds: float = config.DEFAULT_SLEEP,
        rng: Optional[random.Random] = None,
        now: Optional[datetime.datetime] = None,
        stop_event: Optional[asyncio.Event] = None,
    ):
        self.destination = destination
        self.source_path = source_path
        self.context = context
        self.destination_id = destination_id or destination.name
        self.store = store if store is not None else get_progress_store()
        self.time_range = time_range
        self.batch_size = batch_size
        self.sleep_seconds = sleep_seconds
        self.rng = rng or random.Random()
        self.now = now
        self.stop_event = stop_event or asyncio.Event()
        self.batches_sent = 0

    def _set(self, **fields) -> ImportState:
        return self.store.update(self.destination_id, **fields)

    def _open_source(self):
        try:
            return open(self.source_path, "r", encoding="utf-8")
        except OSError as e:
            raise SourceUnavailable(f"Demo data file could not be opened: {self.source_path} ({e.strerror or e})")

    async def _send(self, batch, progress: int):
        start = time.perf_counter()
        try:
            await self.destination.send(batch)
        except Exception:
            metrics.IMPORT_BATCH_FAILURES.inc()
            raise
        finally:
            metrics.IMPORT_SEND_DURATION.observe(time.perf_counter() - start)
        self.batches_sent += 1
        metrics.IMPORT_BATCHES_SENT.inc()
        self._set(progress=progress)
        LOG.debug("sent batch %s (%s lines), progress=%s", self.batches_sent, len(batch), progress)

    async def run(self) -> ImportState:
        self._set(running=True, failed=None, succeeded=False, progress=0)
        try:
            await self._run()
            self._set(succeeded=True)
            metrics.IMPORT_RUNS_SUCCEEDED.inc()
            LOG.info("import into %s finished: %s batches", self.destination_id, self.batches_sent)
        except Exception as e:
            LOG.exception("A problem occurred while importing analytics data into %s", self.destination_id)
            self._set(failed=str(e) or e.__class__.__name__)
            metrics.IMPORT_RUNS_FAILED.inc()
        finally:
            try:
                await self.destination.aclose()
            except Exception:
                LOG.exception("error closing destination %s", self.destination_id)
            metrics.IMPORT_LAST_RUN_TS.set(time.time())
            try:
                self._set(finished_at=timeutil.to_utc_iso())
            except Exception:
                LOG.exception("could not record finish time for %s", self.destination_id)
            self._set(running=False)
        return self.store.get(self.destination_id)

    async def _run(self):
        handle = self._open_source()
        with handle:
            try:
                total = count_lines(handle)
                handle.seek(0)
            except OSError as e:
                raise SourceUnavailable(f"Demo data file could not be read: {self.source_path} ({e})")
            self._set(total=total)
            LOG.info("importing %s lines from %s into %s", total, self.source_path, self.destination_id)

            sessions = SessionState(self.time_range, timeutil.local_midnight_ms(self.now), rng=self.rng)
            await self.destination.prepare(sessions.window)

            batcher = Batcher(self.batch_size)
            progress = 0
            for line in handle:
                progress += 1
                metrics.IMPORT_LINES_READ.inc()

                line = line.rstrip("\r\n")
                key = extract_session_key(line)
                if key is None:
                    metrics.IMPORT_LINES_SKIPPED.inc()
                    continue

                identity = sessions.resolve(key)
                if not batcher.accept(rewrite_line(line, identity, self.context)):
                    continue

                await self._send(batcher.flush(), progress)
                if self.stop_event.is_set():
                    raise ImportCancelled("import cancelled")
                await asyncio.sleep(self.sleep_seconds)

            rest = batcher.flush()
            if rest:
                await self._send(rest, progress)
            # trailing lines without a session key still count
            self._set(progress=progress)
            LOG.info("%s synthetic sessions generated", len(sessions))


# destination id -> running job
_active: Dict[str, ImportJob] = {}


def start_import(
    time_range_days: int = config.DEFAULT_TIME_RANGE,
    batch_size: int = config.DEFAULT_BATCH_SIZE,
    sleep_seconds: float = config.DEFAULT_SLEEP,
    destination_id: str = config.DEFAULT_DESTINATION,
    store=None,
    source_path: Optional[str] = None,
    destination: Optional[Destination] = None,
    context: Optional[RewriteContext] = None,
    rng: Optional[random.Random] = None,
) -> Optional[asyncio.Task]:
    """Schedule an import on the running event loop.

    Returns None without touching any state when an import for the same
    destination is already running.
    """
    store = store if store is not None else get_progress_store()
    if store.get(destination_id).running:
        LOG.info("import into %s already running; ignoring request", destination_id)
        return None
    if isinstance(time_range_days, bool) or not isinstance(time_range_days, int) or time_range_days < 1:
        raise ValueError(f"time_range_days must be a positive integer, got {time_range_days!r}")

    if destination is None:
        destination = get_destination(destination_id)
    if context is None:
        home_url = config.get_home_url()
        setup_demo_content(home_url)
        context = build_context(home_url, config.get_blog_id(), config.get_network_id())

    # raises before any state is written when called outside a loop
    loop = asyncio.get_running_loop()
    mark_started(store, destination_id)

    job = ImportJob(
        destination,
        source_path or config.get_events_log_path(),
        context,
        destination_id=destination_id,
        store=store,
        time_range=time_range_days,
        batch_size=batch_size,
        sleep_seconds=sleep_seconds,
        rng=rng,
    )
    _active[destination_id] = job
    task = loop.create_task(job.run())

    def _forget(_task):
        if _active.get(destination_id) is job:
            del _active[destination_id]

    task.add_done_callback(_forget)
    return task


def cancel_import(destination_id: str) -> bool:
    job = _active.get(destination_id)
    if job is None:
        return False
    job.stop_event.set()
    LOG.info("cancellation requested for import into %s", destination_id)
    return True
