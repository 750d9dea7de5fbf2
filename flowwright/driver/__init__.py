"""Browser driver surface used by the interpreter."""

from .base import BrowserDriver, Target, PAGE

__all__ = ["BrowserDriver", "Target", "PAGE"]
