"""
Telemetry.py
------------
Diagnostic event sinks handed to the controller at construction time.
The format and transport of events belong to the host; the default sink
writes structured dicts to the standard logger.
"""

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class TelemetrySink(Protocol):
    def log_event(self, event: str, payload: dict) -> None:
        ...


class LoggingTelemetry:

    __slots__ = ("_logger", "_level")

    def __init__(self, target: logging.Logger | None = None, level: int = logging.INFO):
        self._logger = target or logger
        self._level = level

    def log_event(self, event: str, payload: dict) -> None:
        self._logger.log(self._level, {"event": event, **payload})


class NullTelemetry:
    def log_event(self, event: str, payload: dict) -> None:
        return None
