"""
Input validation shared by read and write tools.

All checks run before any network activity and raise InvalidInputError.
"""

from __future__ import annotations

import re
from datetime import date, datetime

from mail_imap_mcp.contracts import InvalidInputError

_ACCOUNT_ID = re.compile(r"[A-Za-z0-9_-]{1,64}")
_FLAG_FORBIDDEN = set('"(){}\\')
_YMD = re.compile(r"\d{4}-\d{2}-\d{2}")


def validate_account_id(account_id: str) -> None:
    if not _ACCOUNT_ID.fullmatch(account_id):
        raise InvalidInputError(
            "account_id must be 1..64 characters of letters, digits, '_' or '-'"
        )


def _has_control(value: str) -> bool:
    return any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in value)


def validate_chars(value: str, min_len: int, max_len: int, field_name: str) -> None:
    """Check a free-form string is within length bounds and has no control chars."""
    length = len(value)
    if length < min_len or length > max_len:
        raise InvalidInputError(f"{field_name} must be {min_len}..{max_len} characters")
    if _has_control(value):
        raise InvalidInputError(f"{field_name} must not contain control characters")


def validate_mailbox(mailbox: str) -> None:
    validate_chars(mailbox, 1, 256, "mailbox")


def validate_search_text(value: str, field_name: str) -> None:
    validate_chars(value, 1, 256, field_name)


def validate_flag(flag: str) -> None:
    """
    Validate one IMAP flag.

    Accepts an optional leading backslash followed by an atom free of
    whitespace, control characters, quotes, parens, braces and backslashes,
    so a flag can never break out of the STORE argument list.
    """
    if not 1 <= len(flag) <= 64:
        raise InvalidInputError("flag must be 1..64 characters")
    atom = flag[1:] if flag.startswith("\\") else flag
    if not atom:
        raise InvalidInputError(f"invalid flag '{flag}'")
    for ch in atom:
        if ch.isspace() or ord(ch) < 0x20 or ord(ch) == 0x7F or ch in _FLAG_FORBIDDEN:
            raise InvalidInputError(f"invalid flag '{flag}'")


def validate_flags(flags: list[str] | None) -> list[str]:
    if flags is None:
        return []
    for flag in flags:
        validate_flag(flag)
    return list(flags)


def validate_range(value: int, low: int, high: int, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInputError(f"{field_name} must be an integer")
    if value < low or value > high:
        raise InvalidInputError(f"{field_name} must be between {low} and {high}")
    return value


def parse_ymd(value: str, field_name: str) -> date:
    """Parse a ``YYYY-MM-DD`` date."""
    if not _YMD.fullmatch(value):
        raise InvalidInputError(f"{field_name} must be YYYY-MM-DD")
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise InvalidInputError(f"{field_name} must be YYYY-MM-DD") from None


def require_write_enabled(write_enabled: bool) -> None:
    if not write_enabled:
        raise InvalidInputError(
            "write tools are disabled; set MAIL_IMAP_WRITE_ENABLED=true to enable"
        )
