"""
Monitor Module

Reconciliation loop and the metrics it publishes.
"""

from monitor.metrics import FreshnessMetrics
from monitor.reconciler import Reconciler

__all__ = [
    'FreshnessMetrics',
    'Reconciler',
]
