"""Reader progress: how far the reader has read."""

from usogui.progress.store import ReaderProgressStore, validate_progress

__all__ = ["ReaderProgressStore", "validate_progress"]
