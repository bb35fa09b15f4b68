"""Forward balance projection."""

from fintrack.projection.engine import DailyTracker, find_active_budget, template_matches

__all__ = ["DailyTracker", "find_active_budget", "template_matches"]
