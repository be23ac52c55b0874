"""
API routes package
"""
from advisor.api.routes import chat

__all__ = [
    "chat",
]
