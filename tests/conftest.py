from __future__ import annotations

import logging
from typing import Generator

import pytest

# Import fixtures from testing/ so they are known by pytest
from testing.sockets import cancel  # noqa: F401


@pytest.fixture(autouse=True)
def _route_logging(caplog) -> Generator[None, None, None]:
    """Capture relay logs at INFO for every test."""
    caplog.set_level(logging.INFO, logger='streamroute')
    yield
