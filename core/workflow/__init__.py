"""Core workflow module - throttled batch execution and bounded retry."""

from core.workflow.pipeline import ThrottledPipeline
from core.workflow.retry import RetryScheduler

__all__ = [
    "ThrottledPipeline",
    "RetryScheduler",
]
