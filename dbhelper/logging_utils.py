# dbhelper/logging_utils.py
"""
Logging setup for scripts that run SQL batches.

Scripts get a timestamped log file such as ``deploy_20240115_063000.log``
and, only when something goes wrong, a matching ``deploy_20240115_063000_error.log``.
Defaults come from the ``logging`` block of ``dbhelper.defaults.settings``,
which a config file can override::

    settings:
      logging:
        directory: /var/log/dbhelper
        level: DEBUG
"""

import logging
import sys
from pathlib import Path
from datetime import datetime, timedelta
from typing import Optional, Tuple, List

from .defaults import settings

logger = logging.getLogger(__name__)

# state for errors_logged()
_error_handler: Optional['ErrorCountHandler'] = None
_main_log_path: Optional[str] = None
_error_log_path: Optional[str] = None


class ErrorCountHandler(logging.Handler):
    """
    Counts ERROR and CRITICAL records and opens the error log on the first one,
    so runs without errors leave no empty error file behind.
    """

    def __init__(self, error_log_path: Optional[str] = None, formatter: Optional[logging.Formatter] = None):
        super().__init__(level=logging.ERROR)
        self.error_count = 0
        self.error_log_path = error_log_path
        self.formatter = formatter
        self._error_file_handler = None

    def emit(self, record):
        if record.levelno < logging.ERROR:
            return
        self.error_count += 1
        if self.error_log_path and self._error_file_handler is None:
            self._open_error_log()

    def _open_error_log(self) -> None:
        try:
            handler = logging.FileHandler(self.error_log_path, encoding='utf-8')
        except OSError as e:
            logger.warning(f"Failed to create error log file: {e}")
            self.error_log_path = None
            return
        handler.setLevel(logging.ERROR)
        if self.formatter:
            handler.setFormatter(self.formatter)
        # appended while the root logger is still dispatching, so it also receives this record
        logging.getLogger().addHandler(handler)
        self._error_file_handler = handler

    def close(self):
        if self._error_file_handler is not None:
            self._error_file_handler.close()
        super().close()


def _logging_settings() -> dict:
    return settings.get('logging', {})


def _log_file_names(script_name: str, log_dir: Path, filename_format: str,
                    split_errors: bool) -> Tuple[Path, Optional[Path]]:
    stem = script_name
    if filename_format:
        stem = f"{script_name}_{datetime.now().strftime(filename_format)}"
    error_file = log_dir / f"{stem}_error.log" if split_errors else None
    return log_dir / f"{stem}.log", error_file


def setup_logging(
    script_name: Optional[str] = None,
    log_dir: Optional[str] = None,
    level: Optional[str] = None,
    split_errors: Optional[bool] = None,
    console: Optional[bool] = None
) -> Tuple[str, Optional[str]]:
    """
    Configure the root logger for a script run.

    Args:
        script_name: Base name for log files (defaults to the running script's name)
        log_dir: Directory for log files (default: settings logging.directory)
        level: DEBUG, INFO, WARNING or ERROR (default: settings logging.level)
        split_errors: Copy errors to a separate error log (default: settings logging.split_errors)
        console: Also log to stdout (default: settings logging.console)

    Returns:
        Tuple of (log_file_path, error_log_path or None). The error log
        only exists once an error has been logged.

    Example:
        log_file, _ = setup_logging('nightly_deploy')
        execute_non_query_batch(db, script)
        if errors_logged():
            ...

    Note:
        logging.filename_format controls the timestamp in file names:
        '%Y%m%d_%H%M%S' gives one log per run, '%Y%m%d' one per day and ''
        a single file that is appended to.
    """
    global _error_handler, _main_log_path, _error_log_path

    config = _logging_settings()
    if script_name is None:
        script_name = Path(sys.argv[0]).stem or 'dbhelper'
    log_dir_path = Path(log_dir or config.get('directory', './logs'))
    level = (level or config.get('level', 'INFO')).upper()
    split_errors = config.get('split_errors', True) if split_errors is None else split_errors
    console = config.get('console', True) if console is None else console

    log_level = getattr(logging, level, None)
    if not isinstance(log_level, int):
        raise ValueError(f"Invalid log level: {level}")

    log_dir_path.mkdir(parents=True, exist_ok=True)
    log_file, error_file = _log_file_names(script_name, log_dir_path,
                                           config.get('filename_format', '%Y%m%d_%H%M%S'), split_errors)

    formatter = logging.Formatter(config.get('format', '%(asctime)s [%(levelname)s] %(name)s: %(message)s'),
                                  datefmt=config.get('timestamp_format', '%Y-%m-%d %H:%M:%S'))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    _error_handler = ErrorCountHandler(str(error_file) if error_file else None, formatter)
    root_logger.addHandler(_error_handler)

    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    _main_log_path = str(log_file)
    _error_log_path = str(error_file) if error_file else None

    logger.info(f"Logging initialized: {log_file}")
    if error_file:
        logger.info(f"Error log will be created at: {error_file} (if errors occur)")

    return _main_log_path, _error_log_path


def errors_logged() -> Optional[str]:
    """
    Path of the log holding this run's errors, or None when nothing was logged
    at ERROR or above (or setup_logging() was never called).

    Example:
        setup_logging('nightly_deploy')
        try:
            execute_non_query_batch(conn_str, script)
        except Exception:
            logger.exception("Deploy failed")
        if errors_logged():
            notify_dba(errors_logged())
    """
    if _error_handler is None:
        logger.warning("errors_logged() called but setup_logging() was not called")
        return None
    if _error_handler.error_count == 0:
        return None
    return _error_log_path or _main_log_path


def cleanup_old_logs(
    log_dir: Optional[str] = None,
    retention_days: Optional[int] = None,
    pattern: str = "*.log",
    dry_run: bool = False
) -> List[str]:
    """
    Remove log files older than the retention period.

    Args:
        log_dir: Directory to clean (default: settings logging.directory)
        retention_days: Keep logs modified within this many days (default: settings logging.retention_days)
        pattern: Glob pattern for log files
        dry_run: Only report what would be deleted

    Returns:
        List of deleted (or, with dry_run, deletable) file paths
    """
    config = _logging_settings()
    log_dir_path = Path(log_dir or config.get('directory', './logs'))
    if retention_days is None:
        retention_days = config.get('retention_days', 30)

    if not log_dir_path.exists():
        logger.warning(f"Log directory does not exist: {log_dir_path}")
        return []

    cutoff = (datetime.now() - timedelta(days=retention_days)).timestamp()
    deleted = []
    for log_file in sorted(log_dir_path.glob(pattern)):
        if not log_file.is_file() or log_file.stat().st_mtime >= cutoff:
            continue
        if dry_run:
            logger.info(f"Would delete: {log_file}")
        else:
            try:
                log_file.unlink()
            except OSError as e:
                logger.warning(f"Failed to delete {log_file}: {e}")
                continue
            logger.info(f"Deleted old log: {log_file}")
        deleted.append(str(log_file))

    if deleted and not dry_run:
        logger.info(f"Cleaned up {len(deleted)} old log files")
    return deleted
