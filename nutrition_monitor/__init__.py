"""Nutrition platform monitoring service.

Exports for testing and module access.
"""

from nutrition_monitor import lib, models

__all__ = ['lib', 'models']
