"""Shared validation utilities"""

import re
from typing import Optional


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Args:
        email: Email address string

    Returns:
        Lowercase, trimmed email address

    Raises:
        ValueError: If email format is invalid
    """
    if not email:
        return email

    email = email.strip().lower()

    email_pattern = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"

    if not re.match(email_pattern, email):
        raise ValueError("The e-mail is not a valid format.")

    return email


def validate_ownership(owners: list[dict]) -> Optional[str]:
    """
    Ownership percentages must add up to exactly 100 when a horse has owners.
    Returns the error message, or None when the split is valid.
    """
    if not owners:
        return None
    total = sum(float(owner.get("percentage") or 0) for owner in owners)
    if abs(total - 100) > 1e-9:
        return "Ownership must total 100%"
    return None


def parse_id_list(value: Optional[str]) -> list[int]:
    """Parse a comma separated id list from a query string, skipping junk"""
    if not value:
        return []
    ids = []
    for part in value.split(","):
        part = part.strip()
        if part.isdigit():
            ids.append(int(part))
    return ids
