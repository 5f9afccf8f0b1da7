"""Logging and telemetry for the portfolio chat relay.

Every request ends in exactly one JSON line on the ``chat`` logger, written
to stdout and appended to the configured log file. Message content never
reaches these records; only identifiers, quota numbers and stream sizes do.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from portfolio_chat.relay import TruncationLogFilter

logger = logging.getLogger("chat")

_FORMAT = logging.Formatter(
    "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)


def _file_handler(log_path: Path) -> Optional[logging.FileHandler]:
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler):
            if handler.baseFilename == os.path.abspath(log_path):
                return handler
    return None


def setup_logging(log_file: str, level: str = "INFO") -> None:
    """Attach stdout and file handlers to the ``chat`` logger.

    Safe to call again: the level is updated in place and a handler is only
    added for a destination that is not already attached. Also mutes the
    server's traceback for deliberately truncated streams.

    Args:
        log_file: Path to the append-only log file.
        level: Threshold name from the config, e.g. "INFO" or "DEBUG".
    """
    logger.setLevel(level)

    if not any(type(h) is logging.StreamHandler for h in logger.handlers):
        stdout_handler = logging.StreamHandler()
        stdout_handler.setFormatter(_FORMAT)
        logger.addHandler(stdout_handler)

    log_path = Path(log_file)
    if _file_handler(log_path) is None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        file_handler.setFormatter(_FORMAT)
        logger.addHandler(file_handler)

    server_logger = logging.getLogger("uvicorn.error")
    if not any(isinstance(f, TruncationLogFilter) for f in server_logger.filters):
        server_logger.addFilter(TruncationLogFilter())


def log_request(
    *,
    request_id: str,
    client_id: str,
    outcome: str,
    quota: Optional[Dict[str, Any]] = None,
    stream: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None,
) -> None:
    """Log a single request event as one JSON line.

    Args:
        request_id: Relay-assigned request ID.
        client_id: The rate-limit identifier of the caller.
        outcome: Short outcome label (e.g. "rate_limited", "stream_completed").
        quota: The quota decision, if one was made.
        stream: Chunk and byte counts once streaming has ended.
        error: Error detail for failed requests. Must not carry secrets.
    """
    record: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id,
        "client_id": client_id,
        "outcome": outcome,
    }

    if quota:
        record["quota"] = quota

    if stream:
        record["stream"] = stream

    if error:
        record["error"] = error

    if error and outcome != "client_disconnected":
        logger.warning(json.dumps(record))
    else:
        logger.info(json.dumps(record))
