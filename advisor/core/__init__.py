"""
Core module exports
"""
from advisor.core.config import settings, get_settings
from advisor.core.logging import logger, log_turn_event

__all__ = [
    "settings",
    "get_settings",
    "logger",
    "log_turn_event",
]
