"""Promotional codes and discount arithmetic."""

from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PromoCode(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str = Field(..., description="Code as configured in Guesty")
    discount: float = Field(..., ge=0, lt=1, description="Fraction off, 0.20 = 20%")
    label: str
    description: Optional[str] = None


# Codes must match the coupons configured in Guesty.
PROMO_CODES: dict[str, PromoCode] = {
    "CASAO20": PromoCode(
        code="CasaO20", discount=0.20, label="20% Off", description="20% discount on accommodation"
    ),
    "CASAO30": PromoCode(
        code="CasaO30", discount=0.30, label="30% Off", description="30% discount on accommodation"
    ),
    "CASAO40": PromoCode(
        code="CasaO40", discount=0.40, label="40% Off", description="40% discount on accommodation"
    ),
    "CASAO50": PromoCode(
        code="CasaO50", discount=0.50, label="50% Off", description="50% discount on accommodation"
    ),
    # URL-friendly aliases
    "FRIENDS20": PromoCode(
        code="CasaO20",
        discount=0.20,
        label="Friends & Family 20% Off",
        description="Special rate for friends and family",
    ),
    "FRIENDS30": PromoCode(
        code="CasaO30",
        discount=0.30,
        label="Friends & Family 30% Off",
        description="Special rate for friends and family",
    ),
}

_NON_ALNUM = re.compile(r"[^A-Z0-9]")


def normalize_code(code: str) -> str:
    return _NON_ALNUM.sub("", code.upper())


def resolve(code: str | None) -> PromoCode | None:
    """
    Look up a promo code, ignoring case and punctuation.

    Example:
        >>> resolve("Casa-O20") == resolve("casao20")
        True
        >>> resolve("unknown") is None
        True
    """
    if not code:
        return None
    return PROMO_CODES.get(normalize_code(code))


def apply_discount(price: float, promo: PromoCode | None) -> float:
    """Return ``price`` reduced by the promo's discount, rounded to cents."""
    if promo is None:
        return price
    return round(price * (1 - promo.discount), 2)
