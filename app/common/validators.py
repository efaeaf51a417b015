"""
Field validators shared by request schemas
"""
import re


USERNAME_PATTERN = re.compile(r'^[A-Za-z0-9_.\-]{3,50}$')


def validate_username(username: str) -> bool:
    """3-50 characters: letters, digits, dots, dashes and underscores."""
    return bool(USERNAME_PATTERN.match(username or ''))
