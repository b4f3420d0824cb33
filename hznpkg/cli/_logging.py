"""Logging wiring shared by CLI commands."""

from __future__ import annotations

import logging

from hznpkg.core.reporter import ReporterLogHandler, SynchronizedReporter

EXIT_OK = 0
EXIT_VERIFICATION_FAILED = 1
EXIT_USER_ERROR = 2
EXIT_SYSTEM_ERROR = 3


def exit_code_for(is_user_error: bool) -> int:
    return EXIT_USER_ERROR if is_user_error else EXIT_SYSTEM_ERROR


def attach_reporter_logging(
    reporter: SynchronizedReporter, *, debug: bool = False, level: str = "INFO"
) -> ReporterLogHandler:
    """Route ``hznpkg.*`` log records to the reporter's diagnostic stream.

    Returns the installed handler so the caller can detach it.
    """
    handler = ReporterLogHandler(reporter)
    pkg_logger = logging.getLogger("hznpkg")
    pkg_logger.addHandler(handler)
    pkg_logger.setLevel(logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO))
    pkg_logger.propagate = False
    return handler


def detach_reporter_logging(handler: ReporterLogHandler) -> None:
    pkg_logger = logging.getLogger("hznpkg")
    pkg_logger.removeHandler(handler)
    pkg_logger.propagate = True
    handler.close()
