from __future__ import annotations

import logging
from numbers import Number
from typing import Any

from chatrelay.core.security import redact_secrets

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def redact_record(record: logging.LogRecord) -> logging.LogRecord:
    """Mask secrets in a record's message and positional arguments.

    Numeric arguments are left alone so ``%d`` style placeholders still format.
    """

    if isinstance(record.msg, str):
        record.msg = redact_secrets(record.msg)
    if isinstance(record.args, tuple):
        record.args = tuple(_redact_arg(arg) for arg in record.args)
    return record


def _redact_arg(arg: Any) -> Any:
    if arg is None or isinstance(arg, (bool, Number)):
        return arg
    return redact_secrets(str(arg))


def install_record_redaction() -> None:
    """Redact every log record at creation time.

    Records from any logger pass through the factory, including ``chatrelay.*``
    children and uvicorn's own loggers whose handlers are not on the root.
    """

    previous = logging.getLogRecordFactory()
    if getattr(previous, "redacts_secrets", False):
        return

    def factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
        return redact_record(previous(*args, **kwargs))

    factory.redacts_secrets = True  # type: ignore[attr-defined]
    logging.setLogRecordFactory(factory)


def setup_logging(level: str) -> None:
    """Configure application logging with secret redaction."""

    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    install_record_redaction()
