"""Usogui reader core: spoiler gating and paged list caching."""

__version__ = "0.1.0"
