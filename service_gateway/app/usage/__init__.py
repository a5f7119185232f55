"""
Usage accounting for the gateway.
"""

from .tracker import UsageTracker

__all__ = ["UsageTracker"]
