"""
pos/utils/logging.py
────────────────────
Configures logging for the application and the framework-free cart core.
"""
import os
import logging
from logging.handlers import RotatingFileHandler
from flask import has_request_context, request, session


class RequestFormatter(logging.Formatter):
    """
    Formatter that injects request info (URL, client IP, user id)
    into log records when a request context is available.
    """
    def format(self, record):
        if has_request_context():
            record.url = request.url
            record.remote_addr = request.remote_addr
            record.user_id = session.get('user_id')
        else:
            record.url = None
            record.remote_addr = None
            record.user_id = None
        return super().format(record)


def setup_logging(app):
    """
    Rotating file log at logs/app.log (5MB × 5) plus stdout.
    Format: timestamp | level | logger | client | user | url | message

    app.logger is the 'pos' logger, so records from the cart core
    (logging.getLogger(__name__) under pos.*) propagate to these handlers.
    """
    handlers = []

    if not app.testing:
        log_dir = os.path.join(app.root_path, '..', 'logs')
        try:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = RotatingFileHandler(
                os.path.join(log_dir, 'app.log'),
                maxBytes=5 * 1024 * 1024,
                backupCount=5
            )
        except OSError as exc:
            # Read-only filesystem: stdout only
            app.logger.warning(f"File logging disabled: {exc}")
        else:
            file_handler.setFormatter(RequestFormatter(
                '%(asctime)s | %(levelname)s | %(name)s | %(remote_addr)s | '
                '%(user_id)s | %(url)s | %(message)s'
            ))
            file_handler.setLevel(logging.INFO)
            handlers.append(file_handler)

    # Stdout (container / PaaS logs)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
    ))
    stream_handler.setLevel(logging.INFO)
    handlers.append(stream_handler)

    for handler in handlers:
        app.logger.addHandler(handler)
    app.logger.setLevel(logging.INFO)

    app.logger.info("POS startup")
