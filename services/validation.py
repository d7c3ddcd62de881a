"""
Validation of customer free-text input.
"""
from datetime import datetime, time, timedelta
from typing import Iterable, Optional
from pydantic import BaseModel, Field, field_validator
import re


class AddressInput(BaseModel):
    """Delivery address."""

    address: str = Field(..., description="Delivery address")

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        v = " ".join(v.split())
        if len(v) < 10:
            raise ValueError("Address too short")
        if len(v) > 500:
            raise ValueError("Address too long")
        return v

    @classmethod
    def from_string(cls, text: str) -> "AddressInput":
        return cls(address=text or "")


class ContactPhoneInput(BaseModel):
    """
    Contact phone for the rider.

    Separators are dropped; 7 to 15 digits are required. A leading '+' is
    kept, as is a leading 0 of a local number.
    """

    phone: str = Field(..., description="Contact phone number")

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        v = v.strip()
        if not re.match(r'^\+?[\d\s\-\(\)\.]+$', v):
            raise ValueError("Invalid phone format")
        digits = re.sub(r"\D", "", v)
        if len(digits) < 7 or len(digits) > 15:
            raise ValueError("Phone number must have 7 to 15 digits")
        return f"+{digits}" if v.startswith("+") else digits

    @classmethod
    def from_string(cls, text: str) -> "ContactPhoneInput":
        return cls(phone=text or "")


class NotesInput(BaseModel):
    """Special instructions for the kitchen."""

    text: str = Field(..., min_length=1, max_length=500, description="Order notes")

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Notes cannot be empty")
        return v


class SearchQueryInput(BaseModel):
    """Menu search query."""

    query: str = Field(..., min_length=2, max_length=100, description="Search query")

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Query must have at least 2 characters")
        return v

    @classmethod
    def from_string(cls, text: str) -> "SearchQueryInput":
        return cls(query=(text or "").strip())


def normalize_phone(text: str) -> Optional[str]:
    """Normalized contact phone, or None when the input is not a phone number."""
    try:
        return ContactPhoneInput.from_string(text).phone
    except ValueError:
        return None


def is_greeting(text: str, words: Iterable[str]) -> bool:
    """'hi', 'Hello', 'hey!' and similar short openers are not order notes."""
    lowered = (text or "").strip().lower()
    words = list(words)
    if lowered in words:
        return True
    return len(lowered) <= 5 and any(word in lowered for word in words)


def is_open(now: time, start: Optional[time], end: Optional[time]) -> bool:
    """
    Opening window check. A window whose end is not after its start runs
    past midnight. Missing hours mean always open.
    """
    if start is None or end is None:
        return True
    if end <= start:
        return now >= start or now <= end
    return start <= now <= end


def next_opening(now: datetime, start: Optional[time]) -> Optional[datetime]:
    """Next moment the window opens, today or tomorrow."""
    if start is None:
        return None
    candidate = datetime.combine(now.date(), start)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate
