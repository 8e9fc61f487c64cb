"""
Locator module - element actions in CDP and DOM-only modes.
"""
from tabpilot.locator.smart import SmartElementHandle, SmartLocator
from tabpilot.locator.dom import DomElementHandle, DomLocator

__all__ = [
    "SmartElementHandle",
    "SmartLocator",
    "DomElementHandle",
    "DomLocator",
]
