"""Built-in planners."""

from waggle.planners.claude import ClaudePlanner

__all__ = ["ClaudePlanner"]
