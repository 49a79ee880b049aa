"""Input validation helpers for user, role and token data."""
from __future__ import annotations
import re

_LOCALE_PATTERN = re.compile(r"^[a-z]{2}([_-][A-Z]{2})?$")
_PHONE_PATTERN = re.compile(r"^\+?[0-9 ()/-]{3,32}$")
_AUTHORITY_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]{0,63}$")

MIN_PASSWORD_LENGTH = 8


def validate_email(email: str) -> str:
    """Validate email address.

    Args:
        email: Email address to validate

    Returns:
        Normalized (lower-cased) email address

    Raises:
        ValueError: If email is invalid
    """
    email = email.strip().lower()
    if not email or "@" not in email:
        raise ValueError("Invalid email format")

    local, domain = email.rsplit("@", 1)
    if not local or not domain or "." not in domain:
        raise ValueError("Invalid email format")
    if len(email) > 254:
        raise ValueError("Email exceeds maximum length")

    return email


def validate_name(name: str, field: str) -> str:
    """Validate first/last name fields.

    Args:
        name: Name to validate
        field: Field name for error messages (e.g., "First name")

    Returns:
        Trimmed name

    Raises:
        ValueError: If name is invalid
    """
    name = name.strip()
    if not name:
        raise ValueError(f"{field} is required")
    if len(name) > 128:
        raise ValueError(f"{field} exceeds maximum length")

    # Prevent injection attacks
    if any(char in name for char in "<>\"'`;&|$"):
        raise ValueError(f"{field} contains invalid characters")

    return name


def validate_password(password: str) -> str:
    """Require a minimum length plus at least one letter and one digit."""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password) > 256:
        raise ValueError("Password exceeds maximum length")
    if not any(char.isalpha() for char in password) or not any(char.isdigit() for char in password):
        raise ValueError("Password must contain letters and digits")
    return password


def validate_locale(locale: str) -> str:
    locale = locale.strip()
    if not _LOCALE_PATTERN.match(locale):
        raise ValueError(f"Invalid locale: {locale}")
    return locale


def validate_phone(phone: str) -> str:
    phone = phone.strip()
    if not _PHONE_PATTERN.match(phone):
        raise ValueError("Invalid phone number")
    return phone


def normalize_authority(raw: str, field: str = "Authority") -> str:
    """Upper-case a role name or right authority and check its charset.

    Raises:
        ValueError: If the value is empty or contains characters other than A-Z, 0-9 and "_"
    """
    normalized = raw.strip().upper()
    if not _AUTHORITY_PATTERN.match(normalized):
        raise ValueError(f"{field} must match {_AUTHORITY_PATTERN.pattern}")
    return normalized
