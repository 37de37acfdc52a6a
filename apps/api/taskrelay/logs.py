from __future__ import annotations

import logging

import structlog


def configure_logging(level: str = "info", fmt: str = "json") -> None:
  """Configure structlog with the given level and renderer (json | console)."""
  processors = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.format_exc_info,
  ]
  if fmt == "json":
    processors.append(structlog.processors.JSONRenderer())
  else:
    processors.append(structlog.dev.ConsoleRenderer())

  numeric_level = logging.getLevelName(str(level or "info").upper())
  if not isinstance(numeric_level, int):
    numeric_level = logging.INFO
  structlog.configure(
    processors=processors,
    wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
  )
