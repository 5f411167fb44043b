import concurrent.futures
import gzip
import logging
import os
import re
import shutil
import sys
import threading
from logging import Formatter, Logger, LogRecord, StreamHandler
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Optional

import yaml

from static.color import Color
from static.route import Route


DEFAULT_FORMAT: str = '%(asctime)s [%(levelname)s] [%(name)s] %(message)s'


def _read_logging_cfg(path: Path) -> dict[str, Any]:
    # Logging is configured before ConfigLoader exists, so read the section directly.
    try:
        with open(path, 'r', encoding='utf-8') as f:
            cfg = yaml.safe_load(f) or {}
    except FileNotFoundError:
        print(f"Warning: config file not found at {path}, using default logging settings", file=sys.stderr)
        cfg = {}
    log_cfg = cfg.get('logging') if isinstance(cfg, dict) else None
    if not isinstance(log_cfg, dict):
        log_cfg = {}
    return {
        'level': str(log_cfg.get('level') or 'INFO'),
        'format': str(log_cfg.get('format') or DEFAULT_FORMAT),
        'file': log_cfg.get('file', True) is not False,
    }


LOG_CFG: dict[str, Any] = _read_logging_cfg(Route().YAML_path)
LOGGING_LEVEL: str = LOG_CFG['level']
LOGGING_FORMAT: str = LOG_CFG['format']


class NonBlockingFileHandler(TimedRotatingFileHandler):
    """Rotating file handler that hands writes to a single worker thread and gzips old logs."""

    _executor: concurrent.futures.ThreadPoolExecutor
    _lock: threading.Lock

    def __init__(self, *args: Any, compress: bool = True, **kwargs: Any) -> None:
        self.compress = compress
        super().__init__(*args, **kwargs)
        self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="log_writer")
        self._lock = threading.Lock()

    def emit(self, record: LogRecord) -> None:
        # Format on the caller's thread so record args are not mutated later.
        try:
            msg = self.format(record)
            self._executor.submit(self._sync_write, record, msg)
        except Exception:
            self.handleError(record)

    def _sync_write(self, record: LogRecord, message: str) -> None:
        try:
            with self._lock:
                if self.shouldRollover(record):
                    self.doRollover()
                self.stream.write(message + '\n')
                self.stream.flush()
        except Exception:
            self.handleError(record)

    def doRollover(self) -> None:
        super().doRollover()
        if not self.compress:
            return

        base_path = Path(self.baseFilename)
        suffix_pattern = re.compile(r'\.(\d{4}-\d{2}-\d{2})$')
        old_files = [f for f in base_path.parent.glob(f"{base_path.stem}.log.*") if suffix_pattern.search(f.name)]
        if not old_files:
            return

        latest_old = max(old_files, key=os.path.getmtime)
        gz_path = latest_old.with_suffix(latest_old.suffix + '.gz')
        with open(latest_old, 'rb') as f_in:
            with gzip.open(gz_path, 'wb') as f_out:
                shutil.copyfileobj(f_in, f_out)
        latest_old.unlink()

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        super().close()


class ColoredConsoleFormatter(Formatter):
    """Colors the level and message by severity; log_color tints the logger name."""

    LEVEL_COLORS: dict[str, tuple[str, str]] = {
        "INFO": ('light_gray', 'light_gray'),
        "WARNING": ('gold', 'gold'),
        "ERROR": ('dark_honey', 'ruby'),
        "CRITICAL": ('dark_honey', 'ruby'),
    }

    def __init__(self, fmt: Optional[str] = None, log_color: Optional[str] = None, *args: Any, **kwargs: Any) -> None:
        super().__init__(fmt or LOGGING_FORMAT, *args, **kwargs)
        self.log_color = log_color

    def format(self, record: LogRecord) -> str:
        super().format(record)

        level = record.levelname
        level_name, msg_name = self.LEVEL_COLORS.get(level, ('', ''))
        if level in ("ERROR", "CRITICAL"):
            level_color = Color.bg(level_name)
        else:
            level_color = Color.fg(level_name) if level_name else ""
        msg_color = Color.fg(msg_name) if msg_name else ""
        name_color = Color.fg(self.log_color) if self.log_color else ""

        asctime = getattr(record, 'asctime', '')
        time_part = f"{Color.fg('light_gray')}{asctime} " if asctime else ""

        return (
            f"{time_part}"
            f"{msg_color}[{level_color}{level}{Color.reset()}{msg_color}] "
            f"{name_color}[{record.name}]{Color.reset()} "
            f"{msg_color}{record.getMessage()}{Color.reset()}"
        )


class NoColorFormatter(Formatter):
    """Strips ANSI escapes for file output."""

    ANSI_RE = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')

    def format(self, record: LogRecord) -> str:
        return self.ANSI_RE.sub('', super().format(record))


def setup_logging(name: str, log_color: Optional[str] = None) -> Logger:
    """Create the named logger with a colored console handler and a rotating file handler."""
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, LOGGING_LEVEL.upper(), logging.INFO))

    if logger.handlers:
        logger.handlers.clear()
    logger.propagate = False

    console_handler = StreamHandler()
    console_handler.setFormatter(ColoredConsoleFormatter(log_color=log_color))
    logger.addHandler(console_handler)

    if LOG_CFG['file']:
        logs_dir = Route().logs_dir
        os.makedirs(logs_dir, exist_ok=True)
        file_handler = NonBlockingFileHandler(
            filename=logs_dir / f"{name}.log",
            when="midnight",
            interval=1,
            backupCount=30,
            encoding="utf-8",
            compress=True,
        )
        file_handler.setFormatter(NoColorFormatter(LOGGING_FORMAT))
        logger.addHandler(file_handler)

    return logger
