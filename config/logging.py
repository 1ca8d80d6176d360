import json
import logging
from datetime import datetime, timezone

_RESERVED_ATTRS = frozenset(
    (
        "msg",
        "args",
        "levelname",
        "levelno",
        "name",
        "created",
        "msecs",
        "relativeCreated",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "exc_info",
        "exc_text",
        "stack_info",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    )
)

REDACTED = "***"


class JsonFormatter(logging.Formatter):
    """Minimal JSON formatter for production logs.

    - Merges base fields (time, level, name, message) with any attributes
      provided via `extra` on the log record (e.g., event, payment_id).
    - If the message is a dict, it is merged into the payload under its keys.
    - Dates are ISO-8601 UTC.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        base = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
        }

        msg = record.getMessage()
        try:
            parsed = json.loads(msg) if isinstance(msg, str) else msg
        except ValueError:
            parsed = msg

        if isinstance(parsed, dict):
            payload = {**base, **parsed}
        else:
            payload = {**base, "message": parsed}

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            # Only include simple JSON-serializable values
            try:
                json.dumps(value)
                payload.setdefault(key, value)
            except TypeError:
                payload.setdefault(key, str(value))

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False)


class RedactSecretsFilter(logging.Filter):
    """Mask sensitive `extra` attributes before they reach a handler.

    - `keys`: attribute names to mask wherever they appear on the record,
      including one level deep inside dict values (e.g. a logged payload).

    Records are never dropped; only their values are replaced.
    """

    def __init__(self, keys: list[str] | None = None):
        super().__init__()
        self.keys = {k.lower() for k in (keys or [])}

    def _scrub(self, value):
        if isinstance(value, dict):
            return {k: (REDACTED if str(k).lower() in self.keys else v) for k, v in value.items()}
        return value

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        for key, value in list(record.__dict__.items()):
            if key in _RESERVED_ATTRS:
                continue
            if key.lower() in self.keys:
                setattr(record, key, REDACTED)
            elif isinstance(value, dict):
                setattr(record, key, self._scrub(value))
        return True
