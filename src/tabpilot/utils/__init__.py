"""
Utilities module - Concurrency helpers.
"""
from tabpilot.utils.concurrency import gather_limited

__all__ = [
    "gather_limited",
]
