"""
Core functionality for the CBT session engine.
"""
from .config import settings

__all__ = ["settings"]
