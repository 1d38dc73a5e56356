"""
Follow-up hints and runtime issue logging shared by all tools.
"""

from __future__ import annotations

import logging
import time

from mail_imap_mcp.contracts import Issue, MailboxInfo, MessageSummary, NextAction, Status

logger = logging.getLogger("mail-imap-mcp")


def elapsed_ms(started: float) -> int:
    """Milliseconds since ``started`` (a ``time.monotonic()`` reading)."""
    return int((time.monotonic() - started) * 1000)


def log_runtime_issues(
    tool: str,
    status: Status,
    account_id: str,
    mailbox: str | None,
    issues: list[Issue],
) -> None:
    """Log each issue; failures and internal/timeout issues at error level."""
    for issue in issues:
        level = logging.WARNING
        if status is Status.FAILED or issue.code in ("internal", "timeout"):
            level = logging.ERROR
        logger.log(
            level,
            f"runtime imap issue tool={tool} stage={issue.stage} code={issue.code} "
            f"retryable={issue.retryable} account_id={account_id} mailbox={mailbox} "
            f"uid={issue.uid} message_id={issue.message_id} message={issue.message}",
        )


# =============================================================================
# NEXT ACTIONS
# =============================================================================


def retry_verify(account_id: str) -> NextAction:
    return NextAction(
        instruction="Re-verify account connectivity before proceeding.",
        tool="imap_verify_account",
        arguments={"account_id": account_id},
    )


def list_mailboxes(account_id: str) -> NextAction:
    return NextAction(
        instruction="List mailboxes to choose a mailbox for message search.",
        tool="imap_list_mailboxes",
        arguments={"account_id": account_id},
    )


def search_mailbox(account_id: str, mailbox: str) -> NextAction:
    return NextAction(
        instruction="Search for messages in the selected mailbox.",
        tool="imap_search_messages",
        arguments={
            "account_id": account_id,
            "mailbox": mailbox,
            "limit": 10,
            "include_snippet": False,
        },
    )


def preferred_mailbox(mailboxes: list[MailboxInfo]) -> str | None:
    """INBOX when present (any case), otherwise the first mailbox."""
    for mailbox in mailboxes:
        if mailbox.name.upper() == "INBOX":
            return mailbox.name
    return mailboxes[0].name if mailboxes else None


def for_search_result(
    status: Status,
    account_id: str,
    mailbox: str,
    limit: int,
    cursor: str | None,
    messages: list[MessageSummary],
) -> NextAction:
    if cursor is not None:
        return NextAction(
            instruction="Continue pagination to retrieve more messages.",
            tool="imap_search_messages",
            arguments={
                "account_id": account_id,
                "mailbox": mailbox,
                "cursor": cursor,
                "limit": limit,
                "include_snippet": False,
            },
        )
    if status is Status.FAILED:
        return retry_verify(account_id)
    if messages:
        return NextAction(
            instruction="Open a message to inspect full content and headers.",
            tool="imap_get_message",
            arguments={"account_id": account_id, "message_id": messages[0].message_id},
        )
    return NextAction(
        instruction="Retry search with broader criteria.",
        tool="imap_search_messages",
        arguments={
            "account_id": account_id,
            "mailbox": mailbox,
            "limit": limit,
            "include_snippet": False,
        },
    )
