# src/goalcore/logging_config.py
"""
Logging configuration for GoalCore.

Settings come from the ``[logging]`` section of the GoalCore configuration
(:class:`goalcore.config.models.LoggingConfig`) and support:
- Console logging with display-level gating (see DisplayFilter)
- File logging with a per-run timestamped file or a single rotating file
- Per-component log level overrides

Key concepts:

    **Display filter**: When ``console_enabled=False`` (the default), the
    console handler still exists but only passes log records that carry
    ``extra={"display": True}``. Operational messages such as
    "Recalculated 42 nodes" reach the user of the CLI while normal debug
    chatter stays in the file.

Usage:
    from goalcore.logging_config import configure_logging, log_display

    configure_logging(config.logging, app_name="goalcore")

    logger = logging.getLogger("goalcore.cli")
    log_display(logger, logging.INFO, "Serving on port %d", port)
"""

import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, Union

from .config.models import LoggingConfig

# Noisy third-party loggers kept quiet unless overridden in [logging.components].
DEFAULT_COMPONENT_LEVELS = {
    "goalcore": "INFO",
    "aiosqlite": "WARNING",
    "asyncio": "WARNING",
    "httpx": "WARNING",
    "uvicorn.access": "WARNING",
}


def _level(value: Union[str, int], fallback: int) -> int:
    if isinstance(value, int):
        return value
    level = logging.getLevelName(value.upper())
    return level if isinstance(level, int) else fallback


class DisplayFilter(logging.Filter):
    """Controls which log records pass through to the console handler.

    Behavior matrix::

        +------------------------+--------------+-----------------+
        | console_global         | display=True | display=False/  |
        |                        |              | absent          |
        +------------------------+--------------+-----------------+
        | True  (-v mode)        | PASS         | PASS            |
        | False (default/quiet)  | PASS*        | BLOCK           |
        +------------------------+--------------+-----------------+

        * subject to display_min_level
    """

    def __init__(
        self,
        console_globally_enabled: bool = False,
        display_min_level: int = logging.INFO,
    ) -> None:
        super().__init__()
        self.console_globally_enabled = console_globally_enabled
        self.display_min_level = display_min_level

    def filter(self, record: logging.LogRecord) -> bool:
        if self.console_globally_enabled:
            return True
        if getattr(record, "display", False):
            return record.levelno >= self.display_min_level
        return False


class LoggingManager:
    """
    Process-wide logging setup.

    Logging is configured once; later calls are no-ops unless
    ``force_reconfigure`` is given.
    """

    _configured: bool = False
    _log_file_path: Optional[Path] = None
    _console_handler: Optional[logging.Handler] = None
    _file_handler: Optional[logging.Handler] = None

    @classmethod
    def is_configured(cls) -> bool:
        return cls._configured

    @classmethod
    def get_log_file_path(cls) -> Optional[Path]:
        return cls._log_file_path

    @classmethod
    def configure(
        cls,
        config: Optional[LoggingConfig] = None,
        app_name: str = "goalcore",
        force_reconfigure: bool = False,
    ) -> Optional[Path]:
        """
        Install console and file handlers on the root logger.

        Args:
            config: Logging section; defaults are used when omitted.
            app_name: Used in log file names.
            force_reconfigure: Replace handlers installed by an earlier call.

        Returns:
            Path to the log file, or None when file logging is off.
        """
        if cls._configured and not force_reconfigure:
            return cls._log_file_path

        config = config or LoggingConfig()
        root_logger = logging.getLogger()
        for handler in (cls._console_handler, cls._file_handler):
            if handler is not None:
                root_logger.removeHandler(handler)
                handler.close()
        cls._console_handler = None
        cls._file_handler = None
        cls._log_file_path = None

        root_logger.setLevel(logging.DEBUG)

        console = logging.StreamHandler(sys.stderr)
        if config.console_enabled:
            console.setLevel(_level(config.console_level, logging.WARNING))
        else:
            # The filter is the only gate when the console is off.
            console.setLevel(logging.DEBUG)
        console.setFormatter(logging.Formatter(config.console_format))
        console.addFilter(
            DisplayFilter(
                console_globally_enabled=config.console_enabled,
                display_min_level=_level(config.display_min_level, logging.INFO),
            )
        )
        root_logger.addHandler(console)
        cls._console_handler = console

        if config.file_enabled:
            cls._file_handler, cls._log_file_path = cls._create_file_handler(config, app_name)
            if cls._file_handler is not None:
                root_logger.addHandler(cls._file_handler)

        components = {**DEFAULT_COMPONENT_LEVELS, **config.components}
        for component_name, level_str in components.items():
            logging.getLogger(component_name).setLevel(_level(level_str, logging.INFO))

        cls._configured = True
        if cls._log_file_path:
            logging.getLogger(__name__).debug(f"Logging configured. Log file: {cls._log_file_path}")
        return cls._log_file_path

    @staticmethod
    def _create_file_handler(
        config: LoggingConfig, app_name: str
    ) -> "tuple[Optional[logging.Handler], Optional[Path]]":
        log_dir = Path(os.path.expanduser(config.file_directory))
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            sys.stderr.write(f"Warning: Cannot create log directory {log_dir}: {e}\n")
            return None, None

        handler: logging.Handler
        if config.file_mode == "single":
            log_file_path = log_dir / f"{app_name}.log"
            try:
                handler = RotatingFileHandler(
                    log_file_path,
                    maxBytes=config.rotation_max_bytes,
                    backupCount=config.rotation_backup_count,
                    encoding="utf-8",
                )
            except OSError as e:
                sys.stderr.write(f"Warning: Cannot create log file {log_file_path}: {e}\n")
                return None, None
        else:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            log_file_path = log_dir / f"{app_name}_{timestamp}.log"
            try:
                handler = logging.FileHandler(log_file_path, encoding="utf-8")
            except OSError as e:
                sys.stderr.write(f"Warning: Cannot create log file {log_file_path}: {e}\n")
                return None, None

        handler.setLevel(_level(config.file_level, logging.DEBUG))
        handler.setFormatter(logging.Formatter(config.file_format))
        return handler, log_file_path

    @classmethod
    def set_component_level(cls, component: str, level: Union[str, int]) -> None:
        """Change a specific component's log level at runtime."""
        logging.getLogger(component).setLevel(_level(level, logging.INFO))


def configure_logging(
    config: Optional[LoggingConfig] = None,
    app_name: str = "goalcore",
    force_reconfigure: bool = False,
) -> Optional[Path]:
    """Configure logging for the process. See :meth:`LoggingManager.configure`."""
    return LoggingManager.configure(config=config, app_name=app_name, force_reconfigure=force_reconfigure)


def log_display(
    logger: logging.Logger,
    level: int,
    msg: str,
    *args: Any,
    **kwargs: Any,
) -> None:
    """Log a message that also appears on the console in silent mode.

    Wraps ``logger.log()`` and merges ``{"display": True}`` into ``extra``.
    ``display_min_level`` still applies.
    """
    extra = kwargs.pop("extra", None) or {}
    extra["display"] = True
    kwargs["extra"] = extra
    logger.log(level, msg, *args, **kwargs)


def get_log_file_path() -> Optional[Path]:
    """Get the current log file path."""
    return LoggingManager.get_log_file_path()


def set_component_level(component: str, level: Union[str, int]) -> None:
    """Change a specific component's log level at runtime."""
    LoggingManager.set_component_level(component, level)
