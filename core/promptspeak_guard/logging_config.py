"""Logging setup for promptspeak-guard.

Modules log through ``logging.getLogger(__name__)`` and pass decision
context (event_id, tool, decision, agent_id, hold_id...) in ``extra``.
The stock formatter drops those fields, so ``setup_logging`` installs
GovernanceFormatter on the package logger, which renders them either as
trailing ``key=value`` pairs or as one JSON object per line.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

PACKAGE_LOGGER = "promptspeak_guard"

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}


def _context(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


def _json_safe(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool, type(None))):
        return value
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(v) for v in value]
    return str(value)


class GovernanceFormatter(logging.Formatter):
    """Formatter that keeps the structured context of governance log lines.

    Text mode appends ``key=value`` pairs to the regular line:

        2026-01-01 12:00:00,000 INFO promptspeak_guard.evaluator Governance
        decision event_id=psg_1_1 tool=send_email decision=blocked ...

    JSON mode emits one object per record with ``ts``, ``level``,
    ``logger``, ``message`` and every context field.
    """

    def __init__(self, json_format: bool = False) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s %(message)s")
        self.json_format = json_format

    def format(self, record: logging.LogRecord) -> str:
        context = _context(record)

        if self.json_format:
            payload: dict[str, Any] = {
                "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
            }
            payload.update(_json_safe(context))
            if record.exc_info:
                payload["exc_info"] = self.formatException(record.exc_info)
            return json.dumps(payload, ensure_ascii=False)

        line = super().format(record)
        if not context:
            return line
        pairs = " ".join(f"{key}={value}" for key, value in context.items())
        head, sep, tail = line.partition("\n")
        return f"{head} {pairs}{sep}{tail}"


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    json_format: bool = False,
) -> logging.Logger:
    """Attach governance handlers to the package logger.

    Only the ``promptspeak_guard`` logger is touched; the host's root
    configuration is left alone. Calling this again replaces the handlers
    it installed before.

    Args:
        level: Logging level name; unknown names fall back to INFO
        log_file: Optional file that receives the same lines as stdout
        json_format: Emit one JSON object per record

    Returns:
        The package logger
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    formatter = GovernanceFormatter(json_format=json_format)

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(numeric_level)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)
    return package_logger


def disable_package_logging() -> None:
    """Silence every promptspeak_guard logger (useful for testing)."""
    logging.getLogger(PACKAGE_LOGGER).setLevel(logging.CRITICAL + 1)
