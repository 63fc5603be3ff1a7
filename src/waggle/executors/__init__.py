"""Built-in task executors."""

from waggle.executors.claude import ClaudeExecutor

__all__ = ["ClaudeExecutor"]
