"""Input validation helpers for new directory users."""
from __future__ import annotations

MIN_PASSWORD_LENGTH = 8


def require_text(value: str, field: str) -> str:
    """Return ``value`` stripped, or raise if nothing is left.

    Raises:
        ValueError: If the value is blank
    """
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValueError(f"{field} is required")
    return cleaned


def validate_principal_name(raw: str) -> str:
    """Validate a ``local@domain.tld`` user principal name.

    Args:
        raw: Principal name as typed by the operator

    Returns:
        The principal name without surrounding whitespace

    Raises:
        ValueError: If the principal name is not shaped like an email address
    """
    value = (raw or "").strip()
    if not value:
        raise ValueError("User principal name is required")
    if any(char.isspace() for char in value):
        raise ValueError("User principal name cannot contain spaces")
    if value.count("@") != 1:
        raise ValueError("User principal name must contain exactly one '@'")

    local, domain = value.split("@")
    if not local:
        raise ValueError("User principal name is missing the part before '@'")
    if "." not in domain:
        raise ValueError("User principal name domain must contain a '.'")
    if any(not label for label in domain.split(".")):
        raise ValueError("User principal name domain is malformed")
    return value


def validate_password(password: str) -> str:
    """Check the password against the account password policy.

    The password needs at least eight characters and one character from each of
    the uppercase, lowercase, digit and symbol classes.

    Raises:
        ValueError: Naming the first requirement the password misses
    """
    value = password or ""
    if len(value) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not any(char.isupper() for char in value):
        raise ValueError("Password must contain an uppercase letter")
    if not any(char.islower() for char in value):
        raise ValueError("Password must contain a lowercase letter")
    if not any(char.isdigit() for char in value):
        raise ValueError("Password must contain a digit")
    if all(char.isalnum() for char in value):
        raise ValueError("Password must contain a symbol")
    return value


__all__ = ["MIN_PASSWORD_LENGTH", "require_text", "validate_password", "validate_principal_name"]
