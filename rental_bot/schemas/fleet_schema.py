"""Branch and car Pydantic schemas."""

from pydantic import BaseModel
from typing import Optional


class BranchSchema(BaseModel):
    """Rental branch (static reference data)."""
    id: int
    city: str
    street: str
    building_number: int

    @property
    def address(self) -> str:
        return f"{self.city}, {self.street}, {self.building_number}"

    class Config:
        from_attributes = True


class CarStatusSchema(BaseModel):
    """Car status dictionary entry."""
    id: int
    status_name: str

    class Config:
        from_attributes = True


class CarSchema(BaseModel):
    """Car row, optionally joined with type, status and branch."""
    id: int
    name: str
    release_year: Optional[int] = None
    type_name: Optional[str] = None
    branch_id: int
    status_id: Optional[int] = None
    status_name: Optional[str] = None
    branch_city: Optional[str] = None
    branch_street: Optional[str] = None
    branch_building: Optional[int] = None

    @property
    def title(self) -> str:
        year = f" ({self.release_year})" if self.release_year else ""
        kind = f", {self.type_name}" if self.type_name else ""
        return f"{self.name}{year}{kind}"

    @property
    def branch_address(self) -> str:
        if self.branch_city is None:
            return f"branch #{self.branch_id}"
        return f"{self.branch_city}, {self.branch_street}, {self.branch_building}"

    class Config:
        from_attributes = True
