"""Request schemas - Pydantic models for service request bodies"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from ...security_utils import strip_html


class ServiceLine(BaseModel):
    service: str
    rate: float = 0
    quantity: Optional[int] = None

    @field_validator("quantity")
    @classmethod
    def check_quantity(cls, v):
        if v is not None and v < 0:
            raise ValueError("Quantity cannot be negative")
        return v


class RequestBody(BaseModel):
    """Create and update body; unknown keys are ignored"""

    id: Optional[int] = Field(None, alias="_id")
    date: Optional[datetime] = None
    fromCustomInvoice: bool = False
    show: Any = Field(None, alias="_show")
    horse: Any = Field(None, alias="_horse")
    horseManager: Any = Field(None, alias="_horseManager")
    serviceProvider: Any = Field(None, alias="_serviceProvider")
    reassignedTo: Any = Field(None, alias="_reassignedTo")
    previousReassignees: Optional[list[Any]] = Field(None, alias="_previousReassignees")
    services: list[ServiceLine] = []
    instructions: Optional[str] = None
    competitionClass: Optional[str] = None
    providerNotes: Optional[str] = None
    addedToInvoice: Optional[bool] = None

    @field_validator("instructions", "competitionClass", "providerNotes")
    @classmethod
    def clean_text(cls, v):
        return strip_html(v)

    class Config:
        populate_by_name = True


class DeleteMultipleRequest(BaseModel):
    ids: list[int] = []
