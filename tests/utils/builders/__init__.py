"""Test data builders.

Provides fluent builders for complex test object creation.
"""

from .scheduled_task_builder import ScheduledTaskBuilder

__all__ = [
    "ScheduledTaskBuilder",
]
