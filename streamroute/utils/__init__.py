"""Utilities shared across streamroute modules."""
from __future__ import annotations
