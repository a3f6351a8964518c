"""
Structured logging.

Every record carries the service fields bound at startup and, while a turn is
running, the ``user_id`` and ``turn_id`` the engine binds through
``structlog.contextvars``.
"""

import logging
import os
import sys
from typing import Any, Dict, List, Optional, TextIO

import structlog

CONTEXT_KEYS = ("service", "environment", "version", "user_id", "turn_id")


def _renderer(log_format: str) -> Any:
    if log_format == "console":
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "kindred",
    stream: Optional[TextIO] = None
) -> None:
    """Configure stdlib logging and structlog for the process"""

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=stream or sys.stdout, level=level)

    processors: List[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_service_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _renderer(log_format),
    ]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("KINDRED_ENVIRONMENT", "development"),
        version=os.getenv("KINDRED_VERSION", "unknown")
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Copy the bound service and turn fields onto the record"""

    bound = structlog.contextvars.get_contextvars()
    for key in CONTEXT_KEYS:
        if key in bound:
            event_dict.setdefault(key, bound[key])
    return event_dict


class EngineLogger:
    """Structured records for turn lifecycle, tool calls and context changes"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_turn_event(
        self,
        stage: str,
        user_id: Optional[int],
        mode: str,
        data: Optional[Dict[str, Any]] = None,
        **fields: Any
    ) -> None:
        """Stage is one of started, committed or failed"""

        log = self.logger.warning if stage == "failed" else self.logger.info
        log("turn_event", stage=stage, user_id=user_id, mode=mode, data=data or {}, **fields)

    def log_tool_execution(
        self,
        tool_name: str,
        user_id: Optional[int],
        arguments: Dict[str, Any],
        success: bool = True,
        error: Optional[str] = None
    ) -> None:
        # Argument values may hold user text, so only their names are logged
        fields = {"tool_name": tool_name, "user_id": user_id, "arguments": sorted(arguments), "success": success}
        if success:
            self.logger.info("tool_execution", **fields)
        else:
            self.logger.warning("tool_execution", error=error, **fields)

    def log_context_update(
        self,
        user_id: Optional[int],
        context_type: str,
        action: str,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        self.logger.info(
            "context_update",
            user_id=user_id,
            context_type=context_type,
            action=action,
            details=details or {}
        )


engine_logger = EngineLogger("kindred.engine")
