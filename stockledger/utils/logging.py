"""Process-wide logging setup and per-request correlation ids."""

from __future__ import annotations

import logging
import sys
import uuid
from logging.handlers import RotatingFileHandler
from pathlib import Path

from flask import Flask, g, has_request_context, request

REQUEST_ID_HEADER = "X-Request-ID"
LOG_FORMAT = "%(asctime)s [%(levelname)s] [req=%(request_id)s] %(name)s: %(message)s"
LOG_FILE_NAME = "stockledger.log"


class RequestIdFilter(logging.Filter):
    """Stamp every record with the id of the request that produced it."""

    def filter(self, record: logging.LogRecord) -> bool:
        request_id = getattr(g, "request_id", None) if has_request_context() else None
        record.request_id = request_id or "-"
        return True


def _assign_request_id() -> None:
    incoming = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    g.request_id = incoming[:64] or uuid.uuid4().hex


def _echo_request_id(response):
    request_id = getattr(g, "request_id", None)
    if request_id:
        response.headers[REQUEST_ID_HEADER] = request_id
    return response


def _install(root: logging.Logger, handler: logging.Handler, request_filter: logging.Filter) -> None:
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(request_filter)
    root.addHandler(handler)


def configure_logging(app: Flask) -> Path:
    """Send INFO and above to stdout and a rotating file under ``LOG_DIR``.

    Safe to call once per app instance; handlers already attached to the root
    logger for the same file are reused rather than duplicated.
    """

    log_dir = Path(app.config.get("LOG_DIR") or Path(app.root_path).parent / "logs")
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.INFO)
    request_filter = RequestIdFilter()

    # FileHandler subclasses StreamHandler; only a console handler counts here.
    has_console = any(
        type(handler) is logging.StreamHandler for handler in root.handlers
    )
    if not has_console:
        _install(root, logging.StreamHandler(sys.stdout), request_filter)

    has_file = any(
        isinstance(handler, RotatingFileHandler)
        and getattr(handler, "baseFilename", "") == str(log_path)
        for handler in root.handlers
    )
    if not has_file:
        _install(
            root,
            RotatingFileHandler(log_path, maxBytes=5 * 1024 * 1024, backupCount=5),
            request_filter,
        )

    for handler in app.logger.handlers:
        handler.addFilter(request_filter)
    app.logger.setLevel(logging.INFO)
    for name in ("werkzeug", "gunicorn.error", "gunicorn.access"):
        logging.getLogger(name).setLevel(logging.INFO)

    app.before_request(_assign_request_id)
    app.after_request(_echo_request_id)
    return log_path
