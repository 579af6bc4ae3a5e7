import contextvars
import json
import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional

# Per-request identity, set once in QueryAPI and read by every log record
# emitted while that request is planned.
_trace_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("trace_id", default=None)
_tenant_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("tenant_id", default=None)

_CONTEXT_FIELDS = ("trace_id", "tenant_id")


class RequestContextFilter(logging.Filter):
    """Stamps the current trace and tenant ids onto each record."""

    def filter(self, record):
        record.trace_id = _trace_id_ctx.get()
        record.tenant_id = _tenant_id_ctx.get()
        return True


@contextmanager
def trace_context(trace_id: str, tenant_id: Optional[str] = None):
    """Scopes log records to one planning request."""
    trace_token = _trace_id_ctx.set(trace_id)
    tenant_token = _tenant_id_ctx.set(tenant_id)
    try:
        yield
    finally:
        _tenant_id_ctx.reset(tenant_token)
        _trace_id_ctx.reset(trace_token)


def current_trace_id() -> Optional[str]:
    return _trace_id_ctx.get()


def current_tenant_id() -> Optional[str]:
    return _tenant_id_ctx.get()


class JsonFormatter(logging.Formatter):
    """One JSON object per record; `extra=` fields are carried through."""

    _reserved = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime", *_CONTEXT_FIELDS}

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value:
                payload[field] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in self._reserved and not key.startswith("_")
        )
        return json.dumps(payload, default=str)


TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [trace=%(trace_id)s tenant=%(tenant_id)s] %(message)s"


def configure_logging(level: str = "INFO", json_format: bool = False):
    """Installs a single stream handler on the root logger.

    Calling it again replaces the previous handler, so the CLI and tests
    can reconfigure freely.

    Args:
        level (str): Root log level.
        json_format (bool): Emit JSON lines instead of plain text.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(JsonFormatter() if json_format else logging.Formatter(TEXT_FORMAT))
    root_logger.addHandler(handler)

    # Catalog queries are logged by the introspectors themselves.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlglot").setLevel(logging.ERROR)


def get_logger(name: str) -> logging.Logger:
    """Returns the ``querypilot.<name>`` logger."""
    return logging.getLogger(f"querypilot.{name}")
