"""Feed filtering and ranking."""

from nestmate.visibility.ranking import VisibilityEngine, feed, is_visible_to, ranking_key

__all__ = ["feed", "is_visible_to", "ranking_key", "VisibilityEngine"]
