"""streamroute relays byte streams between socket endpoints."""
from __future__ import annotations

import importlib.metadata as importlib_metadata

__version__ = importlib_metadata.version('streamroute')
