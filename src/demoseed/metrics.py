from prometheus_client import Counter, Histogram, Gauge

# Source stream metrics
IMPORT_LINES_READ = Counter("import_lines_read_total", "Source log lines read by import jobs")
IMPORT_LINES_SKIPPED = Counter("import_lines_skipped_total", "Source log lines skipped for lacking a session key")
IMPORT_SESSIONS_CREATED = Counter("import_sessions_created_total", "Synthetic session identities generated")

# Destination metrics
IMPORT_BATCHES_SENT = Counter("import_batches_sent_total", "Batches delivered to a destination")
IMPORT_BATCH_FAILURES = Counter("import_batch_failures_total", "Batches a destination rejected or failed to receive")
IMPORT_SEND_DURATION = Histogram("import_send_duration_seconds", "Duration of destination batch writes seconds")

# Job metrics
IMPORT_RUNS_SUCCEEDED = Counter("import_runs_succeeded_total", "Import runs that reached the end of the source log")
IMPORT_RUNS_FAILED = Counter("import_runs_failed_total", "Import runs that aborted with an error")
IMPORT_LAST_RUN_TS = Gauge("import_last_run_timestamp", "Timestamp of last finished import run (unix)")
