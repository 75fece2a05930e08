"""
Logger Service Module
Centralized logging configuration with rotation, colored console and JSON output
"""

import json
import logging
import os
import sys
import time
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import colorlog

# LogRecord attributes that are not user-supplied "extra" fields
_RESERVED_RECORD_KEYS = frozenset(
    [
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
    ]
)


class LoggerService:
    """
    Centralized logging service with support for:
    - Colored console output
    - Rotating app and error log files
    - JSON structured logging
    - Performance logging
    """

    def __init__(self, config: dict[str, Any] | None = None):
        self.config = self._default_config()
        if config:
            self.config.update({k: v for k, v in config.items() if v is not None})
        self.loggers: dict[str, logging.Logger] = {}

        self.log_dir = Path(self.config["log_dir"])
        if self.config.get("file_output"):
            try:
                self.log_dir.mkdir(parents=True, exist_ok=True)
                if not os.access(self.log_dir, os.W_OK):
                    raise PermissionError(f"Log directory not writable: {self.log_dir}")
            except OSError:
                # Fall back to a local writable directory to avoid crashing tests/app
                self.log_dir = Path("./logs")
                self.log_dir.mkdir(parents=True, exist_ok=True)

        self._setup_root_logger()

    def _default_config(self) -> dict[str, Any]:
        """Default logging configuration"""
        return {
            "log_dir": "./logs",
            "log_level": "INFO",
            "console_level": "INFO",
            "file_level": "DEBUG",
            "max_bytes": 5 * 1024 * 1024,  # 5MB
            "backup_count": 3,
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            "date_format": "%Y-%m-%d %H:%M:%S",
            "colored_output": True,
            "json_logs": False,
            "file_output": True,
        }

    def _setup_root_logger(self):
        """Configure the root logger"""
        root_logger = logging.getLogger()
        root_logger.setLevel(logging.DEBUG)  # Capture all, filter at handler level
        root_logger.handlers = []

        root_logger.addHandler(self._create_console_handler())

        if self.config.get("file_output"):
            root_logger.addHandler(self._create_file_handler("app.log"))
            root_logger.addHandler(self._create_file_handler("errors.log", level=logging.ERROR))

    def _level(self, key: str, default: str = "INFO") -> int:
        name = str(self.config.get(key) or self.config.get("log_level") or default).upper()
        return getattr(logging, name, logging.INFO)

    def _create_console_handler(self) -> logging.Handler:
        """Create console handler with optional colored output"""
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self._level("console_level"))

        if self.config.get("colored_output"):
            formatter: logging.Formatter = colorlog.ColoredFormatter(
                "%(log_color)s%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt=self.config.get("date_format"),
                log_colors={
                    "DEBUG": "cyan",
                    "INFO": "green",
                    "WARNING": "yellow",
                    "ERROR": "red",
                    "CRITICAL": "red,bg_white",
                },
            )
        else:
            formatter = logging.Formatter(
                self.config.get("format"), datefmt=self.config.get("date_format")
            )

        console_handler.setFormatter(formatter)
        return console_handler

    def _create_file_handler(self, filename: str, level: int | None = None) -> logging.Handler:
        """Create rotating file handler"""
        file_path = self.log_dir / filename

        try:
            handler: logging.Handler = RotatingFileHandler(
                file_path,
                maxBytes=self.config.get("max_bytes"),
                backupCount=self.config.get("backup_count"),
            )
        except OSError:
            # Don't fail hard if filesystem isn't writable (common in CI/sandboxes).
            handler = logging.StreamHandler(sys.stderr)

        handler.setLevel(level or self._level("file_level", "DEBUG"))

        if self.config.get("json_logs"):
            handler.setFormatter(JsonFormatter())
        else:
            handler.setFormatter(
                logging.Formatter(self.config.get("format"), datefmt=self.config.get("date_format"))
            )
        return handler

    def get_logger(self, name: str) -> logging.Logger:
        """Get or create a named logger"""
        if name not in self.loggers:
            self.loggers[name] = logging.getLogger(name)
        return self.loggers[name]

    def log_performance(self, operation: str, duration: float, metadata: dict | None = None):
        """Log performance metrics as a JSON line"""
        perf_data = {
            "operation": operation,
            "duration_ms": duration * 1000,
            "timestamp": datetime.now().isoformat(),
        }
        if metadata:
            perf_data.update(metadata)
        self.get_logger("performance").info(json.dumps(perf_data))

    def set_level(self, level: str, logger_name: str | None = None):
        """Set logging level for a specific logger or the root logger"""
        level_value = getattr(logging, level.upper())
        logging.getLogger(logger_name).setLevel(level_value)

    def cleanup(self):
        """Close root handlers and forget cached loggers"""
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            handler.close()
            root_logger.removeHandler(handler)
        self.loggers.clear()


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class PerformanceLogger:
    """Context manager for performance logging"""

    def __init__(self, logger: logging.Logger, operation: str):
        self.logger = logger
        self.operation = operation
        self.start_time: float | None = None
        self.duration: float = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.perf_counter() - self.start_time

        if exc_type:
            self.logger.error(
                f"Operation '{self.operation}' failed after {self.duration:.3f}s: {exc_val}"
            )
        else:
            self.logger.info(f"Operation '{self.operation}' completed in {self.duration:.3f}s")


# Global logger service instance
_logger_service: LoggerService | None = None


def setup_logging(config: dict | None = None) -> logging.Logger:
    """
    Setup logging configuration and return root logger

    Args:
        config: Optional overrides for the LOGGING/FILES config sections

    Returns:
        Configured root logger
    """
    global _logger_service

    if _logger_service is not None:
        return logging.getLogger()

    from config import config as app_config

    log_config = {
        "log_dir": str(app_config.FILES.get("log_dir", "./logs")),
        "log_level": app_config.LOGGING.get("level", "INFO"),
        "console_level": app_config.LOGGING.get("level", "INFO"),
        "max_bytes": app_config.LOGGING.get("max_bytes"),
        "backup_count": app_config.LOGGING.get("backup_count"),
        "format": app_config.LOGGING.get("format"),
        "date_format": app_config.LOGGING.get("date_format"),
        "json_logs": app_config.LOGGING.get("json_logs", False),
        "file_output": app_config.LOGGING.get("file_output", True),
    }
    if config:
        log_config.update(config)

    _logger_service = LoggerService(log_config)
    return logging.getLogger()


def get_logger(name: str) -> logging.Logger:
    """Get a named logger"""
    if _logger_service is None:
        setup_logging()
    return _logger_service.get_logger(name)


def log_performance(operation: str, duration: float, metadata: dict | None = None):
    """Log performance metrics"""
    if _logger_service:
        _logger_service.log_performance(operation, duration, metadata)


def cleanup_logging():
    """Clean up logging resources"""
    global _logger_service

    if _logger_service:
        _logger_service.cleanup()
        _logger_service = None
