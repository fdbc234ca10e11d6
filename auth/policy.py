"""
auth/policy.py -- Input rules checked before anything is persisted.

Each check raises ValidationError naming the first rule violated, so the
caller can tell the user exactly what to fix. Rules:

  name      letters and spaces only, at least one letter
  email     one "@", a dotted domain, no whitespace; stored lower-cased
  password  8 chars to 72 UTF-8 bytes, ASCII [A-Za-z0-9@$!%*?&] only, with at least one
            lowercase, one uppercase, one digit and one symbol (@$!%*?&)

72 bytes is bcrypt's input limit; longer input is refused by bcrypt itself.
"""

from __future__ import annotations

import re

from auth.errors import ValidationError

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 72
PASSWORD_SYMBOLS = "@$!%*?&"

_NAME_RE = re.compile(r"(?=.*[A-Za-z])[A-Za-z ]+")
_EMAIL_RE = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")
_PASSWORD_CHARSET_RE = re.compile(r"[A-Za-z0-9@$!%*?&]+")

# Ordered: the first failing rule is the one reported.
_PASSWORD_RULES: list[tuple[str, re.Pattern, str]] = [
    ("password_lowercase", re.compile(r"[a-z]"), "Password must contain at least one lowercase letter."),
    ("password_uppercase", re.compile(r"[A-Z]"), "Password must contain at least one uppercase letter."),
    ("password_digit", re.compile(r"[0-9]"), "Password must contain at least one number."),
    (
        "password_symbol",
        re.compile(r"[@$!%*?&]"),
        f"Password must contain at least one special character ({PASSWORD_SYMBOLS}).",
    ),
]


def normalize_email(email: str) -> str:
    return email.strip().lower()


def validate_name(name: str) -> str:
    """Return the name stripped of surrounding spaces, or raise ValidationError."""
    if not isinstance(name, str) or not _NAME_RE.fullmatch(name):
        raise ValidationError("name_format", "Name must contain only alphabets and spaces.")
    return name.strip()


def validate_email(email: str) -> str:
    """Return the normalized email, or raise ValidationError."""
    if not isinstance(email, str) or not _EMAIL_RE.fullmatch(normalize_email(email)):
        raise ValidationError("email_format", "A valid email address is required.")
    return normalize_email(email)


def validate_password(password: str) -> None:
    if not isinstance(password, str) or len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(
            "password_length", f"Password must be at least {PASSWORD_MIN_LENGTH} characters long."
        )
    if len(password.encode("utf-8")) > PASSWORD_MAX_LENGTH:
        raise ValidationError(
            "password_too_long", f"Password must be at most {PASSWORD_MAX_LENGTH} bytes long."
        )
    for rule, pattern, message in _PASSWORD_RULES:
        if not pattern.search(password):
            raise ValidationError(rule, message)
    if not _PASSWORD_CHARSET_RE.fullmatch(password):
        raise ValidationError(
            "password_charset",
            f"Password may only contain letters, numbers and the symbols {PASSWORD_SYMBOLS}.",
        )
