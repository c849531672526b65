"""Logging utilities for Octoshift."""

import os
import re
import sys
from pathlib import Path
from typing import Optional, Set
from urllib.parse import quote

from loguru import logger

GENERIC_ERROR_MESSAGE = (
    'An unexpected error happened. Please see the logs for details.'
)

REDACTION_PATTERNS = [
    # General purpose "don't include the token"
    re.compile(r'(?<=token=)[^&\s]+', re.IGNORECASE),
    # AWS SIGv4 credential
    re.compile(r'(?<=X-Amz-Credential=)[^&\s]+', re.IGNORECASE),
    # Azure Blob Store SAS URL signature
    re.compile(r'(?<=sig=)[^&\s]+', re.IGNORECASE),
]


def setup_logging(
    level: str = 'INFO',
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    verbose_log_file: Optional[str] = None,
) -> None:
    """Setup logging configuration using loguru.

    Args:
        level: Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path
        log_format: Optional custom log format
        verbose_log_file: Optional file that receives every message, verbose included
    """
    # Remove default handler
    logger.remove()

    # Default format if not provided
    if log_format is None:
        log_format = (
            '<green>{time:YYYY-MM-DD HH:mm:ss}</green> | '
            '<level>{level: <8}</level> | '
            '<level>{message}</level>'
        )

    # Add console handler
    logger.add(
        sys.stderr,
        format=log_format,
        level=level,
        colorize=True,
        backtrace=True,
        diagnose=False,
    )

    # File format (no colors)
    file_format = '[{time:YYYY-MM-DD HH:mm:ss}] [{level}] {message}'

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format=file_format,
            level='INFO' if level == 'DEBUG' else level,
            rotation='10 MB',
            retention='30 days',
            compression='gz',
        )

    if verbose_log_file:
        Path(verbose_log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            verbose_log_file,
            format=file_format,
            level='DEBUG',
            rotation='10 MB',
            retention='30 days',
        )

    logger.debug(f'Logging initialized with level: {level}')


class OctoLogger:
    """Logger collaborator handed to every API client.

    Messages are redacted before they reach any loguru sink.
    """

    def __init__(self, verbose: bool = False, debug_mode: Optional[bool] = None):
        """Initialize logger.

        Args:
            verbose: Include exception details in error messages
            debug_mode: Emit ``log_debug`` lines; defaults to ``GEI_DEBUG_MODE``
        """
        self.verbose = verbose
        if debug_mode is None:
            debug_mode = os.getenv('GEI_DEBUG_MODE', '').upper() == 'TRUE'
        self.debug_mode = debug_mode
        self._secrets: Set[str] = set()
        self._logger = logger.bind(component='octoshift')

    def register_secret(self, secret: Optional[str]) -> None:
        if secret:
            self._secrets.add(secret)

    def redact(self, message: str) -> str:
        result = message
        for secret in self._secrets:
            result = result.replace(secret, '***').replace(quote(secret, safe=''), '***')
        for pattern in REDACTION_PATTERNS:
            result = pattern.sub('***', result)
        return result

    def log_info(self, msg: str) -> None:
        self._logger.info(self.redact(msg))

    def log_success(self, msg: str) -> None:
        self._logger.success(self.redact(msg))

    def log_warning(self, msg: str) -> None:
        self._logger.warning(self.redact(msg))

    def log_verbose(self, msg: str) -> None:
        self._logger.debug(self.redact(msg))

    def log_debug(self, msg: str) -> None:
        if self.debug_mode:
            self.log_verbose(msg)

    def log_error(self, error) -> None:
        """Log an error message or exception.

        Exceptions raised by the API layer carry a message meant for users;
        anything else is reported generically unless running verbose.
        """
        if not isinstance(error, BaseException):
            self._logger.error(self.redact(str(error)))
            return

        # api.retry imports this module
        from ..api.exceptions import OctoshiftAPIError

        status = getattr(error, 'status_code', None)
        verbose_message = (
            f'[HTTP ERROR {status}] {error!r}' if status is not None else repr(error)
        )
        if self.verbose:
            message = verbose_message
        elif isinstance(error, OctoshiftAPIError):
            message = str(error)
        else:
            message = GENERIC_ERROR_MESSAGE

        self._logger.error(self.redact(message))
        if message != verbose_message:
            self._logger.debug(self.redact(verbose_message))

