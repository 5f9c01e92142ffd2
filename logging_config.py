"""Logging setup for the authorization server.

Two streams share the root logger:
- operational messages from module loggers, written as "[TAG] message"
- security events from audit() on the "oauth.audit" logger, one JSON
  object per line (code issued, redeemed, replayed; token minted)

Both go to stderr. With a Supabase client, SupabaseSink additionally
batches them into the `logs` and `oauth_audit` tables.
"""

import atexit
import json
import logging
import re
import sys
import threading
import time
from typing import Any, Optional

AUDIT_LOGGER_NAME = "oauth.audit"
LOGS_TABLE = "logs"
AUDIT_TABLE = "oauth_audit"

audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)

_TAG_RE = re.compile(r'\[([A-Z_]+)\]\s*(.*)', re.DOTALL)


def audit(event: str, **fields: Any) -> None:
    """Record a security event. Never pass secrets, codes or tokens here."""
    entry = {"ts": int(time.time()), "event": event, **fields}
    audit_logger.info(json.dumps(entry, sort_keys=True))


def _split_tag(message: str) -> tuple[Optional[str], str]:
    match = _TAG_RE.match(message)
    if match:
        return match.group(1), match.group(2)
    return None, message


class JSONFormatter(logging.Formatter):
    """Turns a record into a row dict for the sink.

    Audit records become {"event", "client_id", "user_id", "fields"} rows;
    everything else keeps the tag split out of its message.
    """

    def __init__(self, service_name: str = None):
        super().__init__()
        self.service_name = service_name or "simple-oauth-server"

    def format(self, record: logging.LogRecord) -> dict:
        if record.name == AUDIT_LOGGER_NAME:
            return self._audit_row(record)

        tag, message = _split_tag(record.getMessage())
        row = {
            "service": self.service_name,
            "level": record.levelname,
            "logger": record.name,
            "tag": tag,
            "message": message,
            "extra": {"module": record.module, "function": record.funcName, "line": record.lineno},
        }
        if record.exc_info:
            row["extra"]["exception"] = self.formatException(record.exc_info)
        return row

    def _audit_row(self, record: logging.LogRecord) -> dict:
        try:
            fields = json.loads(record.getMessage())
        except ValueError:
            fields = {"event": "unparsed", "raw": record.getMessage()}
        return {
            "service": self.service_name,
            "event": fields.pop("event", None),
            "client_id": fields.pop("client_id", None),
            "user_id": fields.pop("user_id", None),
            "fields": fields,
        }


class PlainFormatter(logging.Formatter):
    """Single-line stderr format."""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )


class SupabaseSink(logging.Handler):
    """Batches formatted rows per table and inserts them into Supabase.

    A background thread flushes every flush_interval seconds; a table whose
    buffer reaches batch_size is flushed from the emitting thread.
    """

    def __init__(
        self,
        supabase_client,
        service_name: str,
        batch_size: int = 20,
        flush_interval: float = 10.0,
    ):
        super().__init__()
        self.supabase = supabase_client
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.setFormatter(JSONFormatter(service_name))

        self._buffers: dict[str, list[dict]] = {LOGS_TABLE: [], AUDIT_TABLE: []}
        self._buffer_lock = threading.Lock()
        self._shutdown = threading.Event()
        self._flush_thread = threading.Thread(target=self._flush_worker, daemon=True)
        self._flush_thread.start()

        atexit.register(self.close)

    def emit(self, record: logging.LogRecord):
        try:
            table = AUDIT_TABLE if record.name == AUDIT_LOGGER_NAME else LOGS_TABLE
            row = self.formatter.format(record)
            with self._buffer_lock:
                self._buffers[table].append(row)
                full = len(self._buffers[table]) >= self.batch_size
            if full:
                self._send(table)
        except Exception:
            self.handleError(record)

    def _flush_worker(self):
        while not self._shutdown.wait(self.flush_interval):
            self.flush()

    def _take(self, table: str) -> list[dict]:
        with self._buffer_lock:
            rows, self._buffers[table] = self._buffers[table], []
        return rows

    def _send(self, table: str):
        rows = self._take(table)
        if not rows:
            return
        try:
            self.supabase.table(table).insert(rows).execute()
        except Exception as e:
            # stderr only; logging from here would feed back into this handler
            print(f"[WARNING] Failed to send {len(rows)} rows to {table}: {e}", file=sys.stderr)

    def flush(self):
        """Send everything buffered so far."""
        for table in (AUDIT_TABLE, LOGS_TABLE):
            self._send(table)

    def close(self):
        self._shutdown.set()
        self.flush()
        super().close()


def setup_logging(
    service_name: str = "simple-oauth-server",
    level: str = "INFO",
    supabase_client=None,
) -> logging.Logger:
    """Configure the root logger.

    Args:
        service_name: Name stamped on rows sent to Supabase.
        level: Root log level name. Audit events are kept at INFO
            regardless, so a quiet server still records them.
        supabase_client: Supabase client for the sink, or None for
            stderr only.

    Returns:
        Configured root logger.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()
    audit_logger.setLevel(logging.INFO)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(PlainFormatter())
    root_logger.addHandler(stderr_handler)

    sink_enabled = False
    if supabase_client:
        try:
            root_logger.addHandler(SupabaseSink(supabase_client, service_name))
            sink_enabled = True
        except Exception as e:
            print(f"[WARNING] Supabase logging setup failed: {e}", file=sys.stderr)

    # supabase talks to PostgREST through httpx
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    if sink_enabled:
        logger.info(f"[STARTUP] Shipping logs and audit events to Supabase as {service_name}")
    else:
        logger.info("[STARTUP] Logging to stderr only")

    return root_logger
