"""
Fatal error handlers.

Store initialization failures, malformed queries and change-stream protocol
violations are not recoverable. Where such a failure surfaces away from any
caller that could see the exception (a background open, a queued merge), it is
handed to a FatalHandler instead.
"""

from __future__ import annotations

import logging
import os
from typing import Callable

logger = logging.getLogger(__name__)

FatalHandler = Callable[[BaseException], None]

EXIT_FATAL = 70


def terminate_process(exc: BaseException) -> None:
    """Log ``exc`` at CRITICAL and end the process immediately."""
    logger.critical("Unrecoverable engine failure: %s", exc, exc_info=exc)
    logging.shutdown()
    os._exit(EXIT_FATAL)


def reraise(exc: BaseException) -> None:
    """Handler that re-raises, for embedding applications that manage their own exit."""
    raise exc
