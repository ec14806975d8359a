"""
Structured Logging Module
JSON log formatting and process-wide logging setup
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any, List

from .config import SystemConfig


TEXT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class JSONFormatter(logging.Formatter):
    """
    Formats log records as one JSON object per line

    Context such as the envelope sender or the rejection reason is attached
    with logger.info("msg", extra={"extra_fields": {...}}) and merged into
    the object.

    SECURITY STORY: Rejected messages are exactly the ones worth querying
    later ("every MultipartSyntaxError from this peer"). Keeping the fields
    structured avoids grepping free text that the sender partly controls.
    """

    # Fields that might contain sensitive data - never log their full values
    SENSITIVE_FIELDS = {
        'password', 'token', 'secret', 'credential', 'auth'
    }

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            log_data.update({
                key: self._sanitize_value(key, value)
                for key, value in extra_fields.items()
            })

        return json.dumps(log_data, default=str)

    def _sanitize_value(self, key: str, value: Any) -> Any:
        """Replace values of sensitive-looking keys with a marker"""
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in self.SENSITIVE_FIELDS):
            return "[REDACTED]"
        return value


def setup_logging(system: SystemConfig) -> None:
    """
    Install root handlers according to the system configuration

    Args:
        system: Log level, format ("text" or "json") and optional log file
    """
    level_name = str(system.log_level).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    if system.log_format == "json":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_LOG_FORMAT)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if system.log_file:
        log_path = Path(system.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    if not isinstance(logging.getLevelName(level_name), int):
        logging.getLogger(__name__).warning(
            "Invalid log level '%s'; defaulting to INFO", system.log_level
        )
