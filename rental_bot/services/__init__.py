"""
Services package initialization.

Exports all service classes for easy importing.
"""

from .repository import RentalRepository

__all__ = [
    "RentalRepository",
]
