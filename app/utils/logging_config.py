"""
Centralized Logging Configuration for the Resume Match Pipeline

Everything logs under the ``resume_matcher`` namespace. Console output is
always available; file output adds a daily rotating log plus a separate
errors-only file.
"""
import functools
import inspect
import logging
import logging.config
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional

LOGGER_NAMESPACE = "resume_matcher"

FORMATS = {
    "simple": "%(levelname)s - %(name)s - %(message)s",
    "detailed": "%(asctime)s | %(levelname)-8s | %(name)-40s | %(funcName)-24s:%(lineno)-4d | %(message)s",
    "json": (
        '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", '
        '"function": "%(funcName)s", "line": %(lineno)d, "message": "%(message)s"}'
    ),
}
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5


def _rotating_file(path: Path, level: str) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "formatter": "detailed",
        "filename": str(path),
        "maxBytes": MAX_LOG_BYTES,
        "backupCount": LOG_BACKUPS,
        "encoding": "utf8",
    }


def _logger_entry(level: str, propagate: bool = False) -> Dict[str, Any]:
    return {"level": level, "handlers": [], "propagate": propagate}


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True,
    enable_file: bool = True,
    format_style: str = "detailed",
    log_dir: str = "logs",
) -> None:
    """
    Install handlers for the resume_matcher and uvicorn loggers

    Args:
        level: Threshold for resume_matcher loggers and their handlers
        log_file: Main log path (defaults to <log_dir>/resume_matcher_<date>.log)
        enable_console: Write to stdout
        enable_file: Write rotating main and errors-only files
        format_style: One of FORMATS ('simple', 'detailed', 'json')
        log_dir: Directory for the rotating log files
    """
    handlers: Dict[str, Dict[str, Any]] = {}
    loggers = {
        LOGGER_NAMESPACE: _logger_entry(level),
        "uvicorn": _logger_entry("INFO"),
        # pdfminer is very chatty on malformed documents
        "pdfminer": _logger_entry("ERROR", propagate=True),
    }

    if enable_console:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "simple" if format_style == "simple" else "detailed",
            "stream": "ext://sys.stdout",
        }
        loggers[LOGGER_NAMESPACE]["handlers"].append("console")
        loggers["uvicorn"]["handlers"].append("console")

    if enable_file:
        directory = Path(log_dir)
        directory.mkdir(exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d")
        log_file = log_file or str(directory / f"{LOGGER_NAMESPACE}_{stamp}.log")
        handlers["file"] = _rotating_file(Path(log_file), level)
        handlers["error_file"] = _rotating_file(directory / f"{LOGGER_NAMESPACE}_errors_{stamp}.log", "ERROR")
        loggers[LOGGER_NAMESPACE]["handlers"].extend(["file", "error_file"])
        loggers["uvicorn"]["handlers"].append("file")

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "detailed": {"format": FORMATS.get(format_style, FORMATS["detailed"]), "datefmt": "%Y-%m-%d %H:%M:%S"},
            "simple": {"format": FORMATS["simple"]},
        },
        "handlers": handlers,
        "loggers": loggers,
    })

    get_logger("logging").info(
        f"Logging ready (level={level}, handlers={sorted(handlers)})"
        + (f", writing to {log_file}" if enable_file else "")
    )


def get_logger(name: str) -> logging.Logger:
    """Logger under the resume_matcher namespace, so one dictConfig entry covers every module"""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


def _log_timed(func, started: float, error: Optional[BaseException] = None) -> None:
    log = get_logger(func.__module__)
    elapsed = time.perf_counter() - started
    if error is None:
        log.debug(f"{func.__qualname__} returned in {elapsed:.3f}s")
    else:
        log.error(f"{func.__qualname__} raised {error.__class__.__name__} after {elapsed:.3f}s: {error}")


def log_function_call(func):
    """Debug-log entry and duration of a sync or async callable; errors are logged then re-raised"""

    def enter(args, kwargs) -> float:
        get_logger(func.__module__).debug(
            f"-> {func.__qualname__} ({len(args)} args, kwargs={sorted(kwargs)})"
        )
        return time.perf_counter()

    if inspect.iscoroutinefunction(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            started = enter(args, kwargs)
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _log_timed(func, started, e)
                raise
            _log_timed(func, started)
            return result
    else:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            started = enter(args, kwargs)
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _log_timed(func, started, e)
                raise
            _log_timed(func, started)
            return result

    return wrapper


ENVIRONMENT_PROFILES = {
    "production": {"enable_file": True, "format_style": "json"},
    "development": {"level": "DEBUG", "enable_file": True, "format_style": "detailed"},
    "testing": {"level": "WARNING", "enable_file": False, "format_style": "simple"},
}


def configure_for_environment():
    """Pick a logging profile from ENVIRONMENT; LOG_LEVEL applies where the profile sets no level"""
    profile = dict(ENVIRONMENT_PROFILES.get(os.getenv("ENVIRONMENT", "development").lower(), {}))
    profile.setdefault("level", os.getenv("LOG_LEVEL", "INFO").upper())
    setup_logging(**profile)


class PerformanceMonitor:
    """Times a block; warns past threshold_ms, logs an error if the block raises"""

    def __init__(self, label: str, logger: logging.Logger = None, threshold_ms: float = 1000):
        self.label = label
        self.logger = logger or get_logger("performance")
        self.threshold_ms = threshold_ms
        self._started = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed_ms = (time.perf_counter() - self._started) * 1000
        if exc_type is not None:
            self.logger.error(f"{self.label} failed after {self.elapsed_ms:.0f}ms: {exc_val}")
        elif self.elapsed_ms > self.threshold_ms:
            self.logger.warning(f"{self.label} took {self.elapsed_ms:.0f}ms (threshold {self.threshold_ms:.0f}ms)")
        else:
            self.logger.debug(f"{self.label} took {self.elapsed_ms:.0f}ms")
        return False


class JobLogger(logging.LoggerAdapter):
    """Prefixes messages with the job and subject a processing run belongs to"""

    def process(self, msg, kwargs):
        extra = kwargs.setdefault("extra", {})
        extra.update(self.extra)
        return f"[job={self.extra['job_id']} subject={self.extra['subject_id']}] {msg}", kwargs


def job_logger(logger: logging.Logger, job_id: str, subject_id: str) -> JobLogger:
    return JobLogger(logger, {"job_id": job_id, "subject_id": subject_id})
