"""Domain name and address validation utilities."""

import re
from typing import Tuple

# Lowercase letters, digits and hyphens; no leading or trailing hyphen
DOMAIN_REGEX = re.compile(r"^[a-z0-9](?:[a-z0-9-]*[a-z0-9])?$")

DOMAIN_MIN_LENGTH = 3
DOMAIN_MAX_LENGTH = 63

ADDRESS_PREFIX = "oct"
ADDRESS_MIN_LENGTH = 11


def normalize_domain(domain: str, suffix: str | None = None) -> str:
    """
    Normalize a user-supplied name for storage and lookup.

    Strips whitespace, lowercases, and removes a trailing ``.<suffix>``
    when present ("Alice.OCT" -> "alice").

    Args:
        domain: Raw domain input
        suffix: Protocol suffix without the dot

    Returns:
        Normalized name without suffix
    """
    name = (domain or "").strip().lower()
    if suffix:
        tail = f".{suffix.lower()}"
        if name.endswith(tail):
            name = name[: -len(tail)]
    return name


def validate_domain(domain: str) -> Tuple[bool, str | None]:
    """
    Validate a normalized domain name.

    Args:
        domain: Name without suffix

    Returns:
        Tuple of (is_valid, error_message)
        If valid, error_message is None
    """
    if not domain:
        return False, "Domain name is required"

    if len(domain) < DOMAIN_MIN_LENGTH:
        return False, f"Domain name is too short (min {DOMAIN_MIN_LENGTH} characters)"

    if len(domain) > DOMAIN_MAX_LENGTH:
        return False, f"Domain name is too long (max {DOMAIN_MAX_LENGTH} characters)"

    if not DOMAIN_REGEX.match(domain):
        return False, (
            "Domain name may only contain lowercase letters, digits and hyphens, "
            "and must start and end with a letter or digit"
        )

    return True, None


def validate_address(address: str) -> Tuple[bool, str | None]:
    """
    Check that an address looks like a chain address.

    Args:
        address: Address to check

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not address:
        return False, "Address is required"

    if not address.startswith(ADDRESS_PREFIX):
        return False, f"Address must start with '{ADDRESS_PREFIX}'"

    if len(address) < ADDRESS_MIN_LENGTH:
        return False, "Address is too short"

    return True, None


def full_name(domain: str, suffix: str) -> str:
    """Return the display name with suffix, e.g. ``alice.oct``."""
    return f"{domain}.{suffix}"
