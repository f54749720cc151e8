"""Logging configuration for the swarmctl package."""
import logging
import os
import sys
from typing import List, Optional

from .config import LOG_FILE, LOG_FORMAT


def setup_logging(debug_mode: bool = False, log_file: Optional[str] = None) -> Optional[str]:
    """
    Configure root logging for a CLI run.

    Args:
        debug_mode: Log at DEBUG instead of INFO
        log_file: File to append to (default: SWARMCTL_LOG_FILE or /var/log/cloud-setup.log)

    Returns:
        The log file in use, or None when only the console is logged to
    """
    log_level = logging.DEBUG if debug_mode else logging.INFO
    root = logging.getLogger()

    # Don't add handlers if they're already configured
    if root.handlers:
        root.setLevel(log_level)
        return None

    log_file = log_file or os.getenv("SWARMCTL_LOG_FILE", LOG_FILE)
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    try:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    except OSError:
        # not root, or /var/log is read-only: console only
        log_file = None

    logging.basicConfig(level=log_level, format=LOG_FORMAT, handlers=handlers)

    # Disable debug logging for noisy libraries
    if not debug_mode:
        logging.getLogger('urllib3').setLevel(logging.WARNING)
    return log_file
