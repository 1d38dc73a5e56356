"""
Mail IMAP MCP Contract Types
============================

Domain types, result shapes and the error taxonomy shared by every tool.

Every tool result carries an explicit ``status`` (ok / partial / failed) and a
uniform list of :class:`Issue` records so callers can decide whether to retry,
escalate, or re-resolve a message identity without parsing prose.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


# =============================================================================
# ERROR TYPES
# =============================================================================


class MailImapError(Exception):
    """Base error for all mail IMAP MCP operations."""

    code: str = "internal"
    label: str = "internal error"
    retryable: bool = True

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.label}: {self.message}"


class InvalidInputError(MailImapError):
    """
    Malformed, out-of-range, or contradictory request.

    RECOVERY: Caller must correct the request. Never retryable as-is.
    """

    code = "invalid_input"
    label = "invalid input"
    retryable = False


class NotFoundError(MailImapError):
    """
    Account, mailbox, or message does not exist.

    RECOVERY: Caller should list accounts/mailboxes or re-run a search.
    """

    code = "not_found"
    label = "not found"
    retryable = False


class AuthFailedError(MailImapError):
    """
    Server rejected the configured credentials.

    RECOVERY: Operator must update the stored credentials.
    """

    code = "auth_failed"
    label = "authentication failed"
    retryable = False


class OperationTimeoutError(MailImapError):
    """
    A connect, handshake, login, or per-command deadline elapsed.

    RECOVERY: Retry is reasonable; the session that timed out is abandoned.
    """

    code = "timeout"
    label = "operation timed out"
    retryable = True


class ConflictError(MailImapError):
    """
    Mailbox UIDVALIDITY changed since the identity or cursor was issued.

    RECOVERY: Caller must re-resolve the message via a fresh search.
    """

    code = "conflict"
    label = "conflict"
    retryable = False


class InternalError(MailImapError):
    """
    Unexpected lower-layer failure.

    RECOVERY: Retry is reasonable; the cause is unclassified.
    """

    code = "internal"
    label = "internal error"
    retryable = True


# =============================================================================
# DOMAIN TYPES
# =============================================================================


class Status(str, Enum):
    """Overall outcome of a tool call."""

    OK = "ok"
    PARTIAL = "partial"
    FAILED = "failed"


def status_from(no_issues: bool, has_data: bool) -> Status:
    """Derive call status from whether issues occurred and data was produced."""
    if no_issues:
        return Status.OK
    if has_data:
        return Status.PARTIAL
    return Status.FAILED


@dataclass(frozen=True)
class Issue:
    """A single failed step, reported alongside any partial result."""

    code: str
    stage: str
    message: str
    retryable: bool
    uid: int | None = None
    message_id: str | None = None

    @classmethod
    def from_error(
        cls,
        stage: str,
        error: MailImapError,
        *,
        uid: int | None = None,
        message_id: str | None = None,
    ) -> Issue:
        return cls(
            code=error.code,
            stage=stage,
            message=str(error),
            retryable=error.retryable,
            uid=uid,
            message_id=message_id,
        )


@dataclass(frozen=True)
class NextAction:
    """Suggested follow-up tool call."""

    instruction: str
    tool: str
    arguments: dict[str, Any]


@dataclass(frozen=True)
class AccountInfo:
    """Public account metadata (never the credential)."""

    account_id: str
    host: str
    port: int
    secure: bool


@dataclass(frozen=True)
class ServerInfo:
    host: str
    port: int
    secure: bool


@dataclass(frozen=True)
class MailboxInfo:
    name: str
    delimiter: str | None


@dataclass(frozen=True)
class MessageSummary:
    """One row of a search result page."""

    message_id: str
    message_uri: str
    message_raw_uri: str
    mailbox: str
    uidvalidity: int
    uid: int
    date: str | None
    from_addr: str | None
    subject: str | None
    flags: list[str] | None
    snippet: str | None


@dataclass(frozen=True)
class AttachmentInfo:
    filename: str | None
    content_type: str
    size_bytes: int
    part_id: str
    extracted_text: str | None = None


@dataclass(frozen=True)
class MessageDetail:
    """Parsed message with bounded bodies."""

    message_id: str
    message_uri: str
    message_raw_uri: str
    mailbox: str
    uidvalidity: int
    uid: int
    date: str | None
    from_addr: str | None
    to_addr: str | None
    cc_addr: str | None
    subject: str | None
    flags: list[str] | None
    headers: list[tuple[str, str]] | None
    body_text: str | None
    body_html: str | None
    attachments: list[AttachmentInfo]


# =============================================================================
# TOOL RESULTS
# =============================================================================


@dataclass
class ListAccountsResult:
    accounts: list[AccountInfo]
    next_action: NextAction


@dataclass
class VerifyAccountResult:
    status: Status
    issues: list[Issue]
    next_action: NextAction
    account_id: str
    ok: bool
    latency_ms: int
    server: ServerInfo
    capabilities: list[str]


@dataclass
class ListMailboxesResult:
    status: Status
    issues: list[Issue]
    next_action: NextAction
    account_id: str
    mailboxes: list[MailboxInfo]


@dataclass
class SearchResult:
    status: Status
    issues: list[Issue]
    next_action: NextAction
    account_id: str
    mailbox: str
    total: int = 0
    attempted: int = 0
    returned: int = 0
    failed: int = 0
    messages: list[MessageSummary] = field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False


@dataclass
class GetMessageResult:
    status: Status
    issues: list[Issue]
    account_id: str
    message: MessageDetail | None


@dataclass
class GetMessageRawResult:
    status: Status
    issues: list[Issue]
    account_id: str
    message_id: str
    message_uri: str
    message_raw_uri: str
    size_bytes: int = 0
    raw_source_base64: str | None = None
    raw_source_encoding: str | None = None


@dataclass
class FlagUpdateResult:
    status: Status
    issues: list[Issue]
    account_id: str
    message_id: str
    flags: list[str] | None
    requested_add_flags: list[str]
    requested_remove_flags: list[str]
    applied_add_flags: bool = False
    applied_remove_flags: bool = False


@dataclass
class CopyResult:
    status: Status
    issues: list[Issue]
    source_account_id: str
    destination_account_id: str
    source_mailbox: str
    destination_mailbox: str
    message_id: str
    steps_attempted: int
    steps_succeeded: int
    new_message_id: str | None = None


@dataclass
class MoveResult:
    status: Status
    issues: list[Issue]
    account_id: str
    source_mailbox: str
    destination_mailbox: str
    message_id: str
    steps_attempted: int
    steps_succeeded: int
    strategy: str | None = None
    new_message_id: str | None = None


@dataclass
class DeleteResult:
    status: Status
    issues: list[Issue]
    account_id: str
    mailbox: str
    message_id: str
    steps_attempted: int
    steps_succeeded: int


@dataclass(frozen=True)
class Meta:
    now_utc: str
    duration_ms: int


@dataclass(frozen=True)
class ToolEnvelope:
    """Uniform wrapper returned by every tool."""

    summary: str
    data: Any
    meta: Meta
