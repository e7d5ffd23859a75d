"""
Monitoring Module

Metrics collection and progress reporting for tile generation jobs.
"""

from .metrics import MetricsCollector
from .progress import ProgressTracker

__all__ = [
    "MetricsCollector",
    "ProgressTracker",
]
