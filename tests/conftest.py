"""Shared fixtures for the codemigrate test suite."""

from __future__ import annotations

import logging

import pytest


@pytest.fixture(autouse=True)
def _reset_codemigrate_logger():
    """CLI runs install a rich handler and stop propagation; undo that between tests."""
    yield
    logger = logging.getLogger("codemigrate")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
