"""
Bot Pydantic Schemas for type safety and validation.

Rows coming out of the store are parsed into these models, so handlers never
deal with raw sqlite rows.
"""

from .fleet_schema import BranchSchema, CarSchema, CarStatusSchema
from .rental_schema import RentalSchema, RentalDetailsSchema, DATE_FORMAT

__all__ = [
    "BranchSchema",
    "CarSchema",
    "CarStatusSchema",
    "RentalSchema",
    "RentalDetailsSchema",
    "DATE_FORMAT",
]
