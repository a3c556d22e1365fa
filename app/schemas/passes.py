from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional
import re


class PaymentIntentCreate(BaseModel):
    accessPointId: str = Field(..., min_length=1, max_length=36)
    passTypeId: str = Field(..., min_length=1, max_length=36)
    email: Optional[EmailStr] = None
    plate: Optional[str] = Field(None, max_length=20)
    phone: Optional[str] = Field(None, max_length=30)
    validFrom: Optional[str] = None
    validTo: Optional[str] = None
    numberOfDays: int = Field(1, ge=1, le=28)

    @field_validator('email', 'plate', 'phone', 'validFrom', 'validTo', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator('plate')
    @classmethod
    def normalize_plate(cls, v: Optional[str]) -> Optional[str]:
        """Plates are stored upper-case without spaces"""
        if v is None:
            return v
        return re.sub(r'\s+', '', v).upper()


class PaymentIntentResponse(BaseModel):
    clientSecret: str
    paymentIntentId: str
    passId: str


class SyncPaymentRequest(BaseModel):
    paymentIntentId: str = Field(..., min_length=1, max_length=255)


class PassStatusResponse(BaseModel):
    """Polling response for the success page"""
    pass_id: str
    accessPointName: str
    timezone: str
    code: Optional[str] = None
    backupCode: Optional[str] = None
    pinSource: Optional[str] = None
    codeUnavailable: bool = False
    valid_from: Optional[str] = None
    valid_to: Optional[str] = None
    passType: Optional[str] = None
    vehiclePlate: Optional[str] = None
    device_id: Optional[str] = None
    returnUrl: Optional[str] = None
