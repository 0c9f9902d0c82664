"""Username validation functions."""

import re

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{3,30}$")


def validate_username(username: str) -> str:
    """Validate a username: 3-30 characters of letters, digits, ``_`` or ``-``.

    Raises:
        ValueError: If the username has the wrong length or characters

    """
    if not USERNAME_PATTERN.fullmatch(username):
        raise ValueError("Username must be 3-30 characters of letters, digits, underscores or hyphens")
    return username
