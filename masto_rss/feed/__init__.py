"""Feed synthesis: normalization and RSS rendering."""

from .models import FeedDocument, FeedItem
from .normalizer import normalize, normalize_batch
from .renderer import render

__all__ = ["FeedDocument", "FeedItem", "normalize", "normalize_batch", "render"]
