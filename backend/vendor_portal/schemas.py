from __future__ import annotations

import math
import re
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
CUSTOM_COUNTRY_CODE_PATTERN = re.compile(r"^[A-Za-z]{2,5}$")
OTHER_COUNTRY = "others"
VALID_COUNTRY_CODES = frozenset(
    {
        "in", "ae", "au", "bd", "bt", "br", "ca", "cn", "co", "cz", "de", "dk", "eg", "es",
        "fi", "fr", "gb", "gr", "hu", "id", "ie", "il", "it", "jp", "kr", "lk", "mx", "my",
        "ng", "nl", "no", "np", "nz", "ph", "pl", "pt", "qa", "ro", "ru", "sa", "se", "sg",
        "th", "tr", "us", "ve", "vn", "za", "ch", "be", "ar", "cl", "pk", "ua", "at", "pe",
        "sk", "si", "hr", "bg", "ee", "lt", "lv", "rs", "by", "ge", "is", "lu", "mt", "cy",
        "md", "al", "mk", "me", "ba", "li", "sm", "mc", "va", OTHER_COUNTRY,
    }
)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VendorRegistration(_CamelModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: str = Field(min_length=2, max_length=100)
    designation: str = Field(min_length=2, max_length=100)
    company_name: str = Field(min_length=2, max_length=200)
    firm_type: str = Field(min_length=1, max_length=100)
    vendor_type: str = Field(min_length=1, max_length=100)
    country: str = Field(min_length=2, max_length=10)
    custom_country: Optional[str] = Field(default=None, max_length=100)
    custom_country_code: Optional[str] = Field(default=None, max_length=5)
    website: Optional[str] = Field(default=None, max_length=300)
    contact_no: str = Field(min_length=8, max_length=20)
    email: str = Field(max_length=254)
    category: str = Field(min_length=1, max_length=100)
    product_description: str = Field(min_length=10, max_length=1000)
    major_clients: Optional[str] = Field(default=None, max_length=1000)
    turnover: str
    turnover_currency: Literal["INR", "USD"]
    gst_number: Optional[str] = Field(default=None, max_length=20)
    terms: bool = False
    reference_id: Optional[str] = Field(default=None, max_length=64)

    @field_validator(
        "custom_country",
        "custom_country_code",
        "website",
        "major_clients",
        "gst_number",
        "reference_id",
        mode="before",
    )
    @classmethod
    def _blank_as_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("turnover", mode="before")
    @classmethod
    def _turnover_as_text(cls, value: object) -> object:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not EMAIL_PATTERN.match(normalized):
            raise ValueError("Invalid email format")
        return normalized

    @field_validator("turnover")
    @classmethod
    def _check_turnover(cls, value: str) -> str:
        try:
            amount = float(value)
        except ValueError as exc:
            raise ValueError("Turnover must be a number") from exc
        if not math.isfinite(amount) or amount < 0.1:
            raise ValueError("Turnover must be at least 0.1")
        return value

    @model_validator(mode="after")
    def _normalize_country_fields(self) -> "VendorRegistration":
        if self.country != OTHER_COUNTRY:
            self.custom_country = None
            self.custom_country_code = None
        elif self.custom_country_code:
            self.custom_country_code = self.custom_country_code.upper()
        return self


def validate_country(registration: VendorRegistration) -> Optional[str]:
    """Return a user-facing error for inconsistent country data, or None."""
    if registration.country not in VALID_COUNTRY_CODES:
        return "Invalid country code selected"

    if registration.country != OTHER_COUNTRY:
        return None

    if not registration.custom_country or len(registration.custom_country) < 2:
        return 'Custom country name is required when "Others" is selected'
    code = registration.custom_country_code
    if not code or len(code) < 2:
        return 'Custom country code is required when "Others" is selected'
    if not CUSTOM_COUNTRY_CODE_PATTERN.match(code):
        return "Custom country code must contain only alphabetic characters (2-5 characters)"
    if code.lower() in VALID_COUNTRY_CODES:
        return "Custom country code conflicts with existing country codes. Please use a different code."
    return None


class VendorSubmissionResponse(_CamelModel):
    success: bool = True
    message: str
    reference_id: str
    submission_id: str
    files_count: int
    timestamp: str


class SubmissionStatsResponse(_CamelModel):
    total: int
    last_24_hours: int
    last_7_days: int
    oldest_submission: Optional[str] = None
    newest_submission: Optional[str] = None
