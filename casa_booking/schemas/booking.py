from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class GuestInfo(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    phone: str = Field(..., min_length=3)

    def to_guesty(self) -> dict[str, str]:
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "phone": self.phone,
        }


class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None


class StayDates(BaseModel):
    check_in: date
    check_out: date

    @model_validator(mode="after")
    def check_out_after_check_in(self) -> "StayDates":
        if self.check_out <= self.check_in:
            raise ValueError("check_out must be after check_in")
        return self


class BookingPayload(StayDates):
    guest: GuestInfo
    address: Optional[Address] = None


class QuotePayload(StayDates):
    guests: int = Field(2, ge=1, le=12)
    promo_code: Optional[str] = Field(None, description="Optional promo code, any casing")
