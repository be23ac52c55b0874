"""
LangFuse Observability Integration
Traces every upstream generation (classifier, draft, review, present) when
LangFuse keys are configured; a no-op otherwise.
"""
from typing import Optional

from langfuse.callback import CallbackHandler

from advisor import __version__
from advisor.core.config import settings
from advisor.core.logging import logger


_langfuse_handler: Optional[CallbackHandler] = None


def get_langfuse_handler() -> Optional[CallbackHandler]:
    """Shared callback handler, or None when tracing is disabled."""
    global _langfuse_handler

    if not settings.LANGFUSE_PUBLIC_KEY:
        return None

    if _langfuse_handler is None:
        try:
            _langfuse_handler = CallbackHandler(
                public_key=settings.LANGFUSE_PUBLIC_KEY,
                secret_key=settings.LANGFUSE_SECRET_KEY,
                host=settings.LANGFUSE_HOST,
                release=__version__,
            )
            logger.info("LangFuse tracing enabled")
        except Exception as e:
            logger.warning(f"LangFuse unavailable, tracing disabled: {e}")
            return None

    return _langfuse_handler


def get_callback_config(stage: Optional[str] = None) -> dict:
    """
    Runnable config for one upstream call.

    The stage label becomes the run name and a tag so traces can be filtered
    per pipeline stage.
    """
    handler = get_langfuse_handler()
    if handler is None:
        return {}
    config = {"callbacks": [handler]}
    if stage:
        config["run_name"] = stage
        config["tags"] = [stage]
    return config


def flush_langfuse() -> None:
    """Send buffered traces; called on shutdown."""
    if _langfuse_handler is None:
        return
    try:
        _langfuse_handler.flush()
    except Exception as e:
        logger.warning(f"Failed to flush LangFuse: {e}")
