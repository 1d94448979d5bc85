"""User schemas - Pydantic models for user bodies"""

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import validate_email


class ServiceRate(BaseModel):
    service: str
    rate: float = 0


class UserCreate(BaseModel):
    email: str
    password: str
    name: Optional[str] = None
    roles: list[str] = []
    barn: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    avatar: Optional[dict] = None
    services: list[ServiceRate] = []
    accountSetupComplete: Optional[bool] = None
    privateNotes: Optional[list[dict]] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v):
        return validate_email(v)


class UserUpdate(BaseModel):
    """Every field optional; only fields present in the body are applied"""

    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None
    roles: Optional[list[str]] = None
    barn: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    avatar: Optional[dict] = None
    services: Optional[list[ServiceRate]] = None
    accountSetupComplete: Optional[bool] = None
    privateNotes: Optional[list[dict]] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v):
        return validate_email(v)


class ChangePasswordRequest(BaseModel):
    oldPassword: Optional[str] = None
    newPassword: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    password: Optional[str] = None


class AddDeviceRequest(BaseModel):
    # Either the OneSignal id or the SDK's {userId} object
    deviceId: Any = None


class StripePaymentSetupRequest(BaseModel):
    # Stripe card token id
    id: str


class PaymentApprovalBody(BaseModel):
    id: Optional[int] = Field(None, alias="_id")
    approver: Any = Field(None, alias="_approver")
    isUnlimited: bool = False
    maxAmount: Optional[float] = None

    class Config:
        populate_by_name = True


class TrustedProviderBody(BaseModel):
    provider: Any = Field(None, alias="_provider")
    label: str
    customLabel: Optional[str] = None

    class Config:
        populate_by_name = True
