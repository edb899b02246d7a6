"""Logging configuration for pagedigest."""

import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [run=%(run_id)s]: %(message)s"


class RunIdFilter(logging.Filter):
    """Give every record a ``run_id`` so LOG_FORMAT works outside a run."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "run_id"):
            record.run_id = "-"
        return True


def setup_logging(log_level: str = "INFO") -> None:
    """Send pagedigest logs to stderr, tagged with the run they belong to.

    Stdout stays free for CLI output (summaries, NDJSON event streams).

    Args:
        log_level: Logging level name; unknown names fall back to INFO
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(RunIdFilter())
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[handler],
        force=True,
    )

    for noisy in ("httpx", "httpcore", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
