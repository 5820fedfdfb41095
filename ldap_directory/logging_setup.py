"""
Logging setup and configuration for LDAP Directory Integration.

This module provides the logging configuration used by the command line
entry point: a rotating log file, optional console output, scrubbing of
credentials from log messages and a dedicated security audit logger.
"""

import os
import re
import logging
import logging.handlers
from typing import Dict, Any


class SensitiveDataFilter(logging.Filter):
    """Filter to scrub sensitive data from log messages."""

    SENSITIVE_KEYWORDS = [
        'password', 'bind_password', 'secret', 'credential', 'pwd', 'userPassword'
    ]

    def filter(self, record):
        """Filter out sensitive data from log records."""
        if hasattr(record, 'msg'):
            msg = str(record.msg)

            for keyword in self.SENSITIVE_KEYWORDS:
                # key=value
                msg = re.sub(rf'({keyword}\s*=\s*)[^\s,}}\]]+', r'\1****', msg, flags=re.IGNORECASE)
                # "key": "value"
                msg = re.sub(rf'(["\']{keyword}["\']\s*:\s*["\'])[^"\']*(["\'])', r'\1****\2', msg,
                             flags=re.IGNORECASE)

            record.msg = msg

        return True


class LoggingManager:
    """
    Configures the application log and the security audit log.

    Both files live in ``log_dir`` and roll over at midnight, keeping
    ``retention_days`` old files. Audit records also reach the application log.
    """

    APP_LOG = 'ldap-directory.log'
    AUDIT_LOG = 'security.log'

    def __init__(self):
        self.configured = False
        self.log_dir = None

    def setup_logging(self, config: Dict[str, Any]) -> None:
        """
        Set up logging based on the ``logging`` configuration section.

        Calling it again after a successful setup does nothing.
        """
        if self.configured:
            return

        config = config or {}
        level = getattr(logging, str(config.get('level', 'INFO')).upper(), logging.INFO)
        console_level = getattr(logging, str(config.get('console_level', 'WARNING')).upper(), logging.WARNING)
        retention_days = int(config.get('retention_days', 7))
        self.log_dir = config.get('log_dir', 'logs')
        os.makedirs(self.log_dir, exist_ok=True)

        sensitive_filter = SensitiveDataFilter()
        formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()
        root_logger.addHandler(self._nightly_handler(self.APP_LOG, retention_days, formatter, sensitive_filter))

        audit_logger = logging.getLogger(SecurityAuditLogger.LOGGER_NAME)
        audit_logger.handlers.clear()
        audit_logger.addHandler(self._nightly_handler(self.AUDIT_LOG, retention_days, formatter, sensitive_filter))

        if config.get('console_output', True):
            console_handler = logging.StreamHandler()
            console_handler.setLevel(console_level)
            console_handler.setFormatter(logging.Formatter('%(asctime)s [%(levelname)s] %(message)s',
                                                           datefmt='%H:%M:%S'))
            console_handler.addFilter(sensitive_filter)
            root_logger.addHandler(console_handler)

        self.configured = True
        logging.getLogger(__name__).info(f"Logging to {self.log_dir} at {logging.getLevelName(level)}")

    def _nightly_handler(self, filename: str, retention_days: int,
                         formatter: logging.Formatter, sensitive_filter: logging.Filter) -> logging.Handler:
        handler = logging.handlers.TimedRotatingFileHandler(
            filename=os.path.join(self.log_dir, filename),
            when='midnight',
            backupCount=retention_days,
            encoding='utf-8'
        )
        handler.suffix = '%Y-%m-%d'
        handler.setFormatter(formatter)
        handler.addFilter(sensitive_filter)
        return handler


# Global logging manager instance
_logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any]) -> None:
    """
    Convenience function to set up logging.

    Args:
        config: Logging configuration dictionary
    """
    _logging_manager.setup_logging(config)


class SecurityAuditLogger:
    """Special logger for security-related events."""

    LOGGER_NAME = 'security'

    def __init__(self):
        self.logger = logging.getLogger(self.LOGGER_NAME)

    def log_authentication_attempt(self, system: str, username: str, success: bool, reason: str = ""):
        """Log authentication attempts. Passwords are never passed in."""
        status = "SUCCESS" if success else "FAILURE"
        message = f"Authentication {status}: {system} user={username}"
        if reason:
            message += f" reason={reason}"
        self.logger.info(message)

    def log_security_event(self, event: str, details: str = ""):
        """Log general security events."""
        message = f"Security event: {event}"
        if details:
            message += f" - {details}"
        self.logger.warning(message)


# Global security logger instance
security_logger = SecurityAuditLogger()
