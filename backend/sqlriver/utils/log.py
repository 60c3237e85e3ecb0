"""Logging setup: custom TRACE level and root logger configuration."""

import logging

# Custom TRACE level
TRACE = 5
logging.TRACE = TRACE
logging.addLevelName(TRACE, "TRACE")

# Add trace method to standard Logger class for all instances
def trace_method(self, msg, *args, **kwargs):
    if self.isEnabledFor(TRACE):
        self._log(TRACE, msg, args, **kwargs)

logging.Logger.trace = trace_method

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)-8s - %(message)s'


def resolve_level(log_level_str: str) -> int:
    """Map a level name (including TRACE and VERBOSE) to a numeric level."""
    log_level_str = log_level_str.upper()
    if log_level_str == "TRACE":
        return TRACE
    if log_level_str == "VERBOSE":
        return logging.DEBUG
    return getattr(logging, log_level_str, logging.INFO)


def configure_logging(log_level_str: str) -> None:
    """Configure the root logger once, with per-library levels."""
    log_level_str = log_level_str.upper()
    log_level = resolve_level(log_level_str)
    if logging.getLogger().hasHandlers():
        return

    logging.basicConfig(level=log_level, format=LOG_FORMAT)
    root = logging.getLogger()

    # Handle VERBOSE mode and set specific loggers
    if log_level_str == "VERBOSE":
        http_level = logging.DEBUG
        connectors_level = TRACE
        root.info("VERBOSE mode enabled: HTTP details and connector traces active for debugging.")
    elif log_level_str == "TRACE":
        http_level = TRACE
        connectors_level = TRACE
    else:
        http_level = logging.WARNING
        connectors_level = log_level
    # APScheduler logs every job execution at INFO
    scheduler_level = log_level if log_level <= logging.DEBUG else logging.WARNING

    root.setLevel(log_level)
    logging.getLogger("httpcore").setLevel(http_level)
    logging.getLogger("httpx").setLevel(http_level)
    logging.getLogger("apscheduler").setLevel(scheduler_level)
    logging.getLogger("sqlriver.connectors").setLevel(connectors_level)

    if log_level_str == "TRACE":
        root.trace("Trace logging enabled at startup (verbose details).")
    else:
        root.debug("Debug logging enabled at startup.")
