"""
Configuration
=============

Accounts and server-wide settings loaded from ``MAIL_IMAP_*`` environment
variables. Account segments are discovered by scanning for
``MAIL_IMAP_<SEGMENT>_HOST``; when none exist a ``DEFAULT`` account is
required.

Example environment::

    MAIL_IMAP_DEFAULT_HOST=imap.gmail.com
    MAIL_IMAP_DEFAULT_USER=user@gmail.com
    MAIL_IMAP_DEFAULT_PASS=app-password
    MAIL_IMAP_WORK_HOST=outlook.office365.com
    MAIL_IMAP_WORK_USER=user@company.com
    MAIL_IMAP_WORK_PASS=work-pass
    MAIL_IMAP_WRITE_ENABLED=false

Passwords are held in memory only and never appear in ``repr`` or logs.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field

from mail_imap_mcp.contracts import InvalidInputError, NotFoundError

_ACCOUNT_PATTERN = re.compile(r"^MAIL_IMAP_([A-Z0-9_]+)_HOST$")
_TRUTHY = {"1", "true", "yes", "y", "on"}
_FALSY = {"0", "false", "no", "n", "off"}


@dataclass(frozen=True)
class AccountConfig:
    """IMAP account credentials held in memory only."""

    account_id: str
    host: str
    user: str
    password: str = field(repr=False)
    port: int = 993
    secure: bool = True


@dataclass(frozen=True)
class ServerConfig:
    """Server-wide settings plus every configured account."""

    accounts: dict[str, AccountConfig]
    write_enabled: bool = False
    connect_timeout_ms: int = 30_000
    greeting_timeout_ms: int = 15_000
    socket_timeout_ms: int = 300_000
    cursor_ttl_seconds: int = 600
    cursor_max_entries: int = 512

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ServerConfig:
        """
        Load all configuration from environment variables.

        ERRORS:
        - InvalidInputError: required variable missing or malformed value
        """
        env = os.environ if environ is None else environ

        segments = sorted(
            {m.group(1) for m in (_ACCOUNT_PATTERN.match(k) for k in env) if m}
        )
        if not segments:
            segments = ["DEFAULT"]

        accounts = {}
        for segment in segments:
            account = _load_account(env, segment)
            accounts[account.account_id] = account

        return cls(
            accounts=dict(sorted(accounts.items())),
            write_enabled=_parse_bool(env, "MAIL_IMAP_WRITE_ENABLED", False),
            connect_timeout_ms=_parse_int(env, "MAIL_IMAP_CONNECT_TIMEOUT_MS", 30_000),
            greeting_timeout_ms=_parse_int(env, "MAIL_IMAP_GREETING_TIMEOUT_MS", 15_000),
            socket_timeout_ms=_parse_int(env, "MAIL_IMAP_SOCKET_TIMEOUT_MS", 300_000),
            cursor_ttl_seconds=_parse_int(env, "MAIL_IMAP_CURSOR_TTL_SECONDS", 600),
            cursor_max_entries=_parse_int(env, "MAIL_IMAP_CURSOR_MAX_ENTRIES", 512),
        )

    def get_account(self, account_id: str) -> AccountConfig:
        try:
            return self.accounts[account_id]
        except KeyError:
            raise NotFoundError(f"account '{account_id}' is not configured") from None


def _load_account(env: Mapping[str, str], segment: str) -> AccountConfig:
    prefix = f"MAIL_IMAP_{_sanitize_segment(segment)}_"
    port = _parse_int(env, f"{prefix}PORT", 993)
    if not 0 <= port <= 65535:
        raise InvalidInputError(f"invalid port in environment variable {prefix}PORT: '{port}'")

    return AccountConfig(
        account_id="default" if segment == "DEFAULT" else segment.lower(),
        host=_required(env, f"{prefix}HOST"),
        user=_required(env, f"{prefix}USER"),
        password=_required(env, f"{prefix}PASS"),
        port=port,
        secure=_parse_bool(env, f"{prefix}SECURE", True),
    )


def _sanitize_segment(segment: str) -> str:
    cleaned = "".join(ch.upper() if ch.isascii() and ch.isalnum() else "_" for ch in segment)
    return cleaned.strip("_")


def _required(env: Mapping[str, str], key: str) -> str:
    value = env.get(key)
    if value is None or not value.strip():
        raise InvalidInputError(f"missing required environment variable {key}")
    return value


def parse_bool_value(value: str) -> bool | None:
    """Parse a flexible boolean string; ``None`` when unrecognized."""
    normalized = value.strip().lower()
    if normalized in _TRUTHY:
        return True
    if normalized in _FALSY:
        return False
    return None


def _parse_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None:
        return default
    parsed = parse_bool_value(raw)
    if parsed is None:
        raise InvalidInputError(f"invalid boolean environment variable {key}: '{raw}'")
    return parsed


def _parse_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise InvalidInputError(f"invalid integer environment variable {key}: '{raw}'") from None
    if value < 0:
        raise InvalidInputError(f"invalid integer environment variable {key}: '{raw}'")
    return value
