import os
import sys

from loguru import logger

_logger_initialized = False
_sink_ids: list[int] = []

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | worker={extra[worker_id]} | {name}:{line} | {message}"


def setup_logger(log_level: str = "INFO", log_path: str | None = None, worker_id: str | None = None):
    """Install the console (and optional rotating file) sinks once per process."""
    global _logger_initialized, _sink_ids

    resolved_worker_id = worker_id or os.getenv("WORKER_ID") or str(os.getpid())

    if not _logger_initialized:
        logger.remove()
        logger.configure(extra={"worker_id": resolved_worker_id})

        sinks = [
            logger.add(
                sys.stderr,
                colorize=True,
                level=log_level,
                format=LOG_FORMAT,
            )
        ]
        if log_path:
            os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)
            sinks.append(
                logger.add(
                    log_path,
                    rotation="10 MB",
                    retention="7 days",
                    level=log_level,
                    format=LOG_FORMAT,
                )
            )

        _sink_ids = sinks
        _logger_initialized = True

    return logger.bind(worker_id=resolved_worker_id)
