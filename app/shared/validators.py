"""Shared validation utilities"""

import re
from typing import Optional


def normalize_phone_number(phone: Optional[str]) -> Optional[str]:
    """
    Normalize a phone number to E.164.

    10 digits are treated as a US number, 11 digits starting with 1 as US
    with country code, and an explicit ``+`` prefix accepts 10-15 digits.
    Returns None when the input cannot be normalized.
    """
    if not phone:
        return None

    trimmed = phone.strip()
    if not trimmed:
        return None

    digits = re.sub(r"\D", "", trimmed)
    if len(digits) < 10:
        return None

    if trimmed.startswith("+") and len(digits) <= 15:
        return f"+{digits}"

    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"

    if len(digits) == 10:
        return f"+1{digits}"

    if len(digits) <= 15:
        return f"+{digits}"

    return None


def split_full_name(full_name: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """Split "Given Family Names" into (given_name, family_name)"""
    if not full_name:
        return None, None

    parts = [part for part in full_name.split() if part]
    if not parts:
        return None, None
    if len(parts) == 1:
        return parts[0], None
    return parts[0], " ".join(parts[1:])


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Returns:
        Lowercase email address

    Raises:
        ValueError: If email format is invalid
    """
    if not email:
        return email

    email = email.strip().lower()

    email_pattern = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"

    if not re.match(email_pattern, email):
        raise ValueError("Invalid email format")

    return email
