"""Horse schemas - Pydantic models for horse bodies"""

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from ...security_utils import strip_html


class OwnerBody(BaseModel):
    user: Any = Field(None, alias="_user")
    percentage: float

    class Config:
        populate_by_name = True


class Registration(BaseModel):
    name: Optional[str] = None
    number: Optional[str] = None


class HorseBody(BaseModel):
    """Create and update body; unknown keys are ignored"""

    barnName: Optional[str] = None
    showName: Optional[str] = None
    gender: Optional[str] = None
    description: Optional[str] = None
    avatar: Optional[dict] = None
    color: Optional[str] = None
    dam: Optional[str] = None
    sire: Optional[str] = None
    height: Optional[float] = None
    birthYear: Optional[str] = None
    registrations: Optional[list[Registration]] = None
    owner: Any = Field(None, alias="_owner")
    owners: Optional[list[OwnerBody]] = Field(None, alias="_owners")
    trainer: Any = Field(None, alias="_trainer")
    leasedTo: Any = Field(None, alias="_leasedTo")

    @field_validator("description")
    @classmethod
    def clean_description(cls, v):
        return strip_html(v)

    class Config:
        populate_by_name = True
