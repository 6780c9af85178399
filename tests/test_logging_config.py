"""Tests for the logging entry point."""

import logging

from frameshop.logging_config import LOG_FORMAT, configure_logging


def test_configure_logging_replaces_root_handlers():
    root = logging.getLogger()
    previous = (root.level, list(root.handlers))
    try:
        configure_logging("debug")

        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert root.handlers[0].formatter._fmt == LOG_FORMAT
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        root.handlers[:] = previous[1]
        root.setLevel(previous[0])
