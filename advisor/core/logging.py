"""
Logging configuration with field masking for sensitive data
"""
import logging
import re
from typing import Any, Optional

from advisor.core.config import settings


# Patterns to mask in logs
MASK_PATTERNS = [
    (r'"identity":\s*"[^"]*"', '"identity": "***"'),
    (r"identity=[^\s|,)]+", "identity=***"),
    (r'"policy_number":\s*"[^"]*"', '"policy_number": "***"'),
    (r"[\w.+-]+@[\w-]+\.[\w.-]+", "***@***"),
]


class MaskingFormatter(logging.Formatter):
    """Custom formatter that masks sensitive fields."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for pattern, replacement in MASK_PATTERNS:
            message = re.sub(pattern, replacement, message, flags=re.IGNORECASE)
        return message


def setup_logging() -> logging.Logger:
    """Configure application logging."""
    logger = logging.getLogger("advisor")
    logger.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)

    if not logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
        console_handler.setFormatter(
            MaskingFormatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        logger.addHandler(console_handler)

    return logger


# Global logger instance
logger = setup_logging()


def log_turn_event(
    route: str,
    identity: Optional[str],
    details: dict[str, Any],
) -> None:
    """Log the routing decision taken for one conversational turn."""
    logger.info(
        f"TURN: route={route} | identity={identity or 'anonymous'} | details={details}"
    )
