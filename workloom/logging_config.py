"""
Logging setup shared by the web app and the RQ worker.

LOG_LEVEL picks the root level (INFO when unset or unknown). LOG_FORMAT picks
"text" for terminals or "json" for log aggregators; JSON lines carry the
account/job/mapping ids passed through ``extra=``.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone

# Record attributes copied into JSON output when a call site sets them
CONTEXT_FIELDS = ('account_id', 'job_id', 'mapping_id', 'run_id')

# Client libraries that log every request at INFO
QUIET_LOGGERS = ('urllib3', 'requests', 'rq.worker', 'apify_client', 'httpcore', 'httpx')

TEXT_FORMAT = '%(asctime)s %(levelname)-7s [%(name)s] %(message)s'


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record):
        payload = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value:
                payload[field] = value
        if record.exc_info and record.exc_info[0] is not None:
            payload['exception'] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_handler(level, fmt):
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    if fmt == 'json':
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    return handler


def configure_logging(app=None):
    """Replace the root handlers with a single stderr handler.

    Safe to call more than once; the worker calls it per process and
    create_app() per app instance.
    """
    level = logging.getLevelName(os.getenv('LOG_LEVEL', 'INFO').upper())
    if not isinstance(level, int):
        level = logging.INFO
    fmt = os.getenv('LOG_FORMAT', 'text').lower()

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(_build_handler(level, fmt))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if app is not None:
        app.logger.setLevel(level)
