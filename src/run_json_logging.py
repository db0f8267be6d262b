import json
import logging
import sys
from contextlib import contextmanager
from datetime import datetime

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(run_id)s] %(message)s"

_ORIGINAL_EXCEPTHOOK = sys.excepthook


class RunIdFilter(logging.Filter):
    def __init__(self, run_id):
        super().__init__()
        self._run_id = run_id or "-"

    def filter(self, record):
        record.run_id = self._run_id
        return True


class JsonLineHandler(logging.Handler):
    """Append one JSON object per record to ``path``."""

    def __init__(self, path, run_id=None):
        super().__init__()
        self._path = path
        self._run_id = run_id
        self._stream = open(path, "a", encoding="utf-8")
        self._exception_formatter = logging.Formatter()

    def emit(self, record):
        payload = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "run_id": self._run_id,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            payload["exception"] = self._exception_formatter.formatException(record.exc_info)
        self._stream.write(json.dumps(payload, ensure_ascii=False) + "\n")
        self._stream.flush()

    def close(self):
        try:
            if self._stream:
                self._stream.close()
        finally:
            self._stream = None
            super().close()


def _clear_root_handlers(root_logger):
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()


def setup_logging(log_path, verbose, run_id=None, event_log_path=None):
    """Send records to ``log_path`` and stdout, plus an optional JSON-lines log."""
    log_level = logging.DEBUG if verbose else logging.INFO
    root_logger = logging.getLogger()
    _clear_root_handlers(root_logger)
    run_id_filter = RunIdFilter(run_id)
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.addFilter(run_id_filter)
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.addFilter(run_id_filter)
    handlers = [file_handler, stream_handler]
    if event_log_path:
        event_handler = JsonLineHandler(event_log_path, run_id=run_id)
        event_handler.addFilter(run_id_filter)
        handlers.append(event_handler)
    logging.basicConfig(level=log_level, format=LOG_FORMAT, handlers=handlers, force=True)

    def _log_uncaught_exception(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            _ORIGINAL_EXCEPTHOOK(exc_type, exc_value, exc_traceback)
            return
        logging.getLogger().error(
            "Uncaught exception",
            exc_info=(exc_type, exc_value, exc_traceback),
        )
        _ORIGINAL_EXCEPTHOOK(exc_type, exc_value, exc_traceback)

    sys.excepthook = _log_uncaught_exception


def silence_logging():
    """Drop every record on processes that are not the coordinator."""
    root_logger = logging.getLogger()
    _clear_root_handlers(root_logger)
    root_logger.addHandler(logging.NullHandler())
    root_logger.setLevel(logging.CRITICAL + 1)


@contextmanager
def setup_logging_context(log_path, verbose, *, enabled=True, run_id=None, event_log_path=None):
    original_excepthook = sys.excepthook
    if enabled:
        setup_logging(log_path, verbose, run_id=run_id, event_log_path=event_log_path)
    else:
        silence_logging()
    try:
        yield
    finally:
        _clear_root_handlers(logging.getLogger())
        sys.excepthook = original_excepthook


__all__ = [
    "JsonLineHandler",
    "LOG_FORMAT",
    "RunIdFilter",
    "setup_logging",
    "setup_logging_context",
    "silence_logging",
]
