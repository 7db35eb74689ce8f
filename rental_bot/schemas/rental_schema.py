"""Rental-related Pydantic schemas."""

from datetime import date
from pydantic import BaseModel, model_validator
from typing import Optional

DATE_FORMAT = "%d.%m.%Y"


class RentalSchema(BaseModel):
    """Single rental with resolved car name and branch addresses."""
    rental_id: int
    car_id: int
    user_id: int
    car_name: str
    start_date: date
    end_date: date
    start_branch_id: int
    start_branch_addr: str
    end_branch_id: int
    end_branch_addr: str

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    class Config:
        from_attributes = True


class RentalDetailsSchema(BaseModel):
    """Row of the RentalDetails view."""
    rental_id: int
    car_name: str
    login: Optional[str] = None
    start_date: date
    end_date: date
    start_branch_addr: str
    end_branch_addr: str

    @property
    def period(self) -> str:
        return f"{self.start_date.strftime(DATE_FORMAT)} - {self.end_date.strftime(DATE_FORMAT)}"

    def describe(self) -> str:
        owner = f" [{self.login}]" if self.login else ""
        return (
            f"#{self.rental_id} {self.car_name}{owner}\n"
            f"  {self.period}\n"
            f"  from: {self.start_branch_addr}\n"
            f"  to: {self.end_branch_addr}"
        )

    class Config:
        from_attributes = True
