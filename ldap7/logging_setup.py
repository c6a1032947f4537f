"""
Logging setup and configuration for ldap7.

This module configures the root logger with file rotation, retention and
console output, and scrubs credentials and password hashes from messages.
"""

import os
import re
import glob
import logging
import logging.handlers
from typing import Dict, Any, List, Optional
from datetime import datetime, timedelta


class SensitiveDataFilter(logging.Filter):
    """Filter to scrub sensitive data from log messages."""

    SENSITIVE_KEYWORDS = [
        'userPassword', 'bind_password', 'password', 'token', 'secret',
        'credential', 'pwd',
    ]

    def __init__(self, name: str = ''):
        super().__init__(name)
        # crypt(3) hashes wherever they show up
        self._patterns = [(re.compile(r'\{CRYPT\}\S+'), '{CRYPT}****')]
        for keyword in self.SENSITIVE_KEYWORDS:
            # key=value and key: value
            self._patterns.append((
                re.compile(rf'({keyword}\s*[=:]\s*)(?!["\']|\{{CRYPT\}})[^\s,}}\]]+', re.IGNORECASE),
                r'\1****'
            ))
            # "key": "value" and 'key': ['value']
            self._patterns.append((
                re.compile(rf'(["\']{keyword}["\']\s*:\s*\[?\s*["\'])[^"\']*(["\'])', re.IGNORECASE),
                r'\1****\2'
            ))

    def filter(self, record):
        """Filter out sensitive data from log records."""
        msg = record.getMessage() if record.args else str(record.msg)
        for pattern, replacement in self._patterns:
            msg = pattern.sub(replacement, msg)
        record.msg = msg
        record.args = None
        return True


MAIN_LOG = 'ldap7.log'
AUDIT_LOGGER = 'ldap7.audit'

DETAILED_FORMAT = '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s'
AUDIT_FORMAT = '%(asctime)s %(message)s'
CONSOLE_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'


def _level(name: Optional[str], default: int) -> int:
    return getattr(logging, str(name or '').upper(), default)


class LoggingManager:
    """
    Owns the root logger configuration of an ldap7 run.

    Everything goes to ``ldap7.log``; bind and write events from
    ``ldap7.audit`` are also copied to their own file when ``audit_file`` is
    set. Rotated files older than ``retention_days`` are removed on setup.
    """

    def __init__(self):
        self.configured = False
        self.log_dir = None
        self.retention_days = 7
        self.audit_file = None
        self._handlers: List[logging.Handler] = []

    def setup_logging(self, config: Dict[str, Any], force: bool = False) -> None:
        """
        Install handlers on the root logger.

        Args:
            config: The ``logging`` section of the configuration
            force: Reconfigure even if logging was already set up
        """
        if self.configured and not force:
            return

        config = config or {}
        level = _level(config.get('level'), logging.INFO)
        self.log_dir = self._usable_directory(config.get('log_dir', 'logs'))
        self.retention_days = config.get('retention_days', 7)
        self.audit_file = config.get('audit_file')
        rotation = str(config.get('rotation', 'daily')).lower()

        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            if handler in self._handlers:
                handler.close()
        root_logger.setLevel(level)

        self._handlers = self._build_handlers(config, level, rotation)
        for handler in self._handlers:
            root_logger.addHandler(handler)

        # ldap3 logs every PDU at DEBUG
        logging.getLogger('ldap3').setLevel(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)

        self._cleanup_old_logs()
        self.configured = True

        logging.getLogger(__name__).info(
            f"Logging configured: level={logging.getLevelName(level)}, dir={self.log_dir}, "
            f"audit={self.audit_file or 'off'}, retention={self.retention_days} days"
        )

    def _build_handlers(self, config: Dict[str, Any], level: int, rotation: str) -> List[logging.Handler]:
        scrubber = SensitiveDataFilter()

        main_handler = self._file_handler(MAIN_LOG, rotation)
        main_handler.setLevel(level)
        main_handler.setFormatter(logging.Formatter(DETAILED_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        handlers = [main_handler]

        if self.audit_file:
            audit_handler = self._file_handler(self.audit_file, rotation)
            audit_handler.setLevel(logging.INFO)
            audit_handler.setFormatter(logging.Formatter(AUDIT_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
            audit_handler.addFilter(logging.Filter(AUDIT_LOGGER))
            handlers.append(audit_handler)

        if config.get('console_output', True):
            console_handler = logging.StreamHandler()
            console_handler.setLevel(_level(config.get('console_level'), logging.WARNING))
            console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt='%H:%M:%S'))
            handlers.append(console_handler)

        for handler in handlers:
            handler.addFilter(scrubber)
        return handlers

    def _usable_directory(self, log_dir: str) -> str:
        try:
            os.makedirs(log_dir, exist_ok=True)
        except OSError as e:
            print(f"Warning: Could not create log directory {log_dir}: {e}; logging to current directory")
            return '.'
        return log_dir

    def _file_handler(self, filename: str, rotation: str) -> logging.Handler:
        """Daily rotation keeps ``retention_days`` dated backups; 'none' appends forever."""
        path = os.path.join(self.log_dir, filename)
        if rotation not in ('daily', 'midnight'):
            return logging.FileHandler(path, encoding='utf-8')

        handler = logging.handlers.TimedRotatingFileHandler(
            filename=path,
            when='midnight',
            backupCount=self.retention_days,
            encoding='utf-8'
        )
        handler.suffix = '%Y-%m-%d'
        return handler

    def _log_names(self) -> List[str]:
        return [MAIN_LOG] + ([self.audit_file] if self.audit_file else [])

    def _cleanup_old_logs(self) -> None:
        """Remove rotated backups older than the retention period."""
        if self.retention_days <= 0:
            return

        cutoff = datetime.now() - timedelta(days=self.retention_days)
        current = {os.path.join(self.log_dir, name) for name in self._log_names()}

        for log_file in self.get_log_files():
            if log_file in current:
                continue
            try:
                if datetime.fromtimestamp(os.path.getmtime(log_file)) < cutoff:
                    os.remove(log_file)
            except OSError as e:
                print(f"Warning: Could not remove old log file {log_file}: {e}")

    def get_log_files(self) -> List[str]:
        """Current and rotated log files, sorted by path."""
        if not self.log_dir:
            return []

        files = set()
        for name in self._log_names():
            files.update(glob.glob(os.path.join(self.log_dir, name + '*')))
        return sorted(files)

    def get_log_stats(self) -> Dict[str, Any]:
        log_files = self.get_log_files()
        return {
            'configured': self.configured,
            'log_directory': self.log_dir,
            'audit_file': self.audit_file,
            'retention_days': self.retention_days,
            'log_files_count': len(log_files),
            'total_size_bytes': sum(os.path.getsize(path) for path in log_files if os.path.exists(path)),
        }


_logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any], force: bool = False) -> None:
    """Configure logging for the process; see :meth:`LoggingManager.setup_logging`."""
    _logging_manager.setup_logging(config, force=force)


def get_logging_stats() -> Dict[str, Any]:
    return _logging_manager.get_log_stats()


class DirectoryAuditLogger:
    """Audit trail of binds and write operations against the directory."""

    def __init__(self):
        self.logger = logging.getLogger(AUDIT_LOGGER)

    def log_bind(self, server_url: str, bind_dn: str, success: bool):
        status = "SUCCESS" if success else "FAILURE"
        self.logger.info(f"Bind {status}: {server_url} dn={bind_dn}")

    def log_entry_operation(self, operation: str, dn: str, success: bool):
        status = "SUCCESS" if success else "FAILURE"
        self.logger.info(f"Entry {operation} {status}: {dn}")


audit_logger = DirectoryAuditLogger()
