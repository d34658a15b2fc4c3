"""Client-side cache for paginated list endpoints."""

from usogui.cache.paged import CachedPage, PagedResourceCache, filter_signature
from usogui.cache.view import PagedView

__all__ = ["CachedPage", "PagedResourceCache", "PagedView", "filter_signature"]
