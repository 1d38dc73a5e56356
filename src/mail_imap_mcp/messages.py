"""
Read-only tools: accounts, connectivity, mailboxes, and message retrieval.

Message reads select the mailbox with EXAMINE and fetch with BODY.PEEK, so
no read ever sets ``\\Seen``.
"""

from __future__ import annotations

import base64
import logging
import time

from mail_imap_mcp import reporting
from mail_imap_mcp.config import ServerConfig
from mail_imap_mcp.contracts import (
    AccountInfo,
    ConflictError,
    GetMessageRawResult,
    GetMessageResult,
    InvalidInputError,
    Issue,
    ListAccountsResult,
    ListMailboxesResult,
    MailImapError,
    MessageDetail,
    ServerInfo,
    Status,
    VerifyAccountResult,
    status_from,
)
from mail_imap_mcp.imap_client import ImapSession, SessionFactory, connect_authenticated
from mail_imap_mcp.message_id import MessageId, parse_and_validate_message_id
from mail_imap_mcp.mime import curated_headers, parse_message
from mail_imap_mcp.validation import validate_account_id, validate_range

logger = logging.getLogger("mail-imap-mcp.messages")

MAX_MAILBOXES = 200
MAX_CAPABILITIES = 256
MAX_ATTACHMENTS = 50


def ensure_uidvalidity(session: ImapSession, message_id: MessageId, *, readonly: bool) -> None:
    """
    Re-select the message's mailbox and compare UIDVALIDITY.

    ERRORS:
    - ConflictError: the mailbox epoch no longer matches the message id
    - any session error from the select itself
    """
    current = session.select(message_id.mailbox, readonly=readonly)
    if current != message_id.uidvalidity:
        raise ConflictError("message uidvalidity no longer matches mailbox")


class MessageReader:
    def __init__(self, config: ServerConfig, connect: SessionFactory = connect_authenticated) -> None:
        self._config = config
        self._connect = connect

    def list_accounts(self) -> ListAccountsResult:
        accounts = [
            AccountInfo(account_id=a.account_id, host=a.host, port=a.port, secure=a.secure)
            for a in self._config.accounts.values()
        ]
        first = accounts[0].account_id if accounts else "default"
        return ListAccountsResult(accounts=accounts, next_action=reporting.list_mailboxes(first))

    def verify_account(self, account_id: str) -> VerifyAccountResult:
        """
        Check connectivity, authentication and capabilities.

        NOOP and CAPABILITY failures are recorded independently, so whatever
        was learned is still reported.
        """
        validate_account_id(account_id)
        account = self._config.get_account(account_id)
        server = ServerInfo(host=account.host, port=account.port, secure=account.secure)
        started = time.monotonic()
        issues: list[Issue] = []

        try:
            session = self._connect(self._config, account)
        except MailImapError as e:
            issues.append(Issue.from_error("connect_authenticated", e))
            reporting.log_runtime_issues("imap_verify_account", Status.FAILED, account_id, None, issues)
            return VerifyAccountResult(
                status=Status.FAILED,
                issues=issues,
                next_action=reporting.retry_verify(account_id),
                account_id=account.account_id,
                ok=False,
                latency_ms=reporting.elapsed_ms(started),
                server=server,
                capabilities=[],
            )

        capabilities: list[str] = []
        with session:
            try:
                session.noop()
            except MailImapError as e:
                issues.append(Issue.from_error("noop", e))
            try:
                capabilities = session.capabilities()
            except MailImapError as e:
                issues.append(Issue.from_error("capabilities", e))

        status = status_from(not issues, True)
        reporting.log_runtime_issues("imap_verify_account", status, account_id, None, issues)
        return VerifyAccountResult(
            status=status,
            issues=issues,
            next_action=reporting.list_mailboxes(account_id),
            account_id=account.account_id,
            ok=status is not Status.FAILED,
            latency_ms=reporting.elapsed_ms(started),
            server=server,
            capabilities=sorted(capabilities)[:MAX_CAPABILITIES],
        )

    def list_mailboxes(self, account_id: str) -> ListMailboxesResult:
        validate_account_id(account_id)
        account = self._config.get_account(account_id)
        issues: list[Issue] = []

        try:
            session = self._connect(self._config, account)
        except MailImapError as e:
            issues.append(Issue.from_error("connect_authenticated", e))
            reporting.log_runtime_issues("imap_list_mailboxes", Status.FAILED, account_id, None, issues)
            return ListMailboxesResult(
                status=Status.FAILED,
                issues=issues,
                next_action=reporting.retry_verify(account_id),
                account_id=account.account_id,
                mailboxes=[],
            )

        mailboxes = []
        with session:
            try:
                mailboxes = session.list_mailboxes()[:MAX_MAILBOXES]
            except MailImapError as e:
                issues.append(Issue.from_error("list_mailboxes", e))

        status = status_from(not issues, bool(mailboxes))
        reporting.log_runtime_issues("imap_list_mailboxes", status, account_id, None, issues)
        preferred = reporting.preferred_mailbox(mailboxes)
        if preferred is not None:
            next_action = reporting.search_mailbox(account_id, preferred)
        else:
            next_action = reporting.retry_verify(account_id)
        return ListMailboxesResult(
            status=status,
            issues=issues,
            next_action=next_action,
            account_id=account.account_id,
            mailboxes=mailboxes,
        )

    def get_message(
        self,
        account_id: str,
        message_id: str,
        body_max_chars: int = 2000,
        include_headers: bool = True,
        include_all_headers: bool = False,
        include_html: bool = False,
        extract_attachment_text: bool = False,
        attachment_text_max_chars: int | None = None,
    ) -> GetMessageResult:
        """
        Fetch and parse one message.

        PRE: ``message_id`` belongs to ``account_id``
        POST: message state is unchanged (EXAMINE + BODY.PEEK)
        ERRORS:
        - InvalidInputError: bounds, or message id malformed / foreign account
        - ConflictError: mailbox UIDVALIDITY changed
        A connect, raw-fetch or parse failure yields a ``failed`` result; a
        flags fetch failure yields ``partial``.
        """
        validate_account_id(account_id)
        validate_range(body_max_chars, 100, 20_000, "body_max_chars")
        if attachment_text_max_chars is not None and not extract_attachment_text:
            raise InvalidInputError(
                "attachment_text_max_chars requires extract_attachment_text=true"
            )
        if attachment_text_max_chars is None:
            attachment_text_max_chars = 10_000
        validate_range(attachment_text_max_chars, 100, 50_000, "attachment_text_max_chars")

        msg_id = parse_and_validate_message_id(account_id, message_id)
        encoded = msg_id.encode()
        account = self._config.get_account(account_id)
        issues: list[Issue] = []

        def failed(issue: Issue) -> GetMessageResult:
            issues.append(issue)
            reporting.log_runtime_issues("imap_get_message", Status.FAILED, account_id, msg_id.mailbox, issues)
            return GetMessageResult(status=Status.FAILED, issues=issues, account_id=account_id, message=None)

        try:
            session = self._connect(self._config, account)
        except MailImapError as e:
            return failed(Issue.from_error("connect_authenticated", e, message_id=encoded))

        with session:
            ensure_uidvalidity(session, msg_id, readonly=True)
            try:
                raw = session.fetch_raw(msg_id.uid)
            except MailImapError as e:
                return failed(Issue.from_error("fetch_raw_message", e, uid=msg_id.uid, message_id=encoded))
            try:
                parsed = parse_message(
                    raw,
                    body_max_chars,
                    include_html,
                    extract_attachment_text,
                    attachment_text_max_chars,
                )
            except MailImapError as e:
                return failed(Issue.from_error("parse_message", e, uid=msg_id.uid, message_id=encoded))

            flags = None
            try:
                flags = session.fetch_flags(msg_id.uid)
            except MailImapError as e:
                issues.append(Issue.from_error("fetch_flags", e, uid=msg_id.uid, message_id=encoded))

        headers = None
        if include_headers or include_all_headers:
            headers = curated_headers(parsed.headers, include_all_headers)

        detail = MessageDetail(
            message_id=encoded,
            message_uri=msg_id.message_uri(),
            message_raw_uri=msg_id.message_raw_uri(),
            mailbox=msg_id.mailbox,
            uidvalidity=msg_id.uidvalidity,
            uid=msg_id.uid,
            date=parsed.date,
            from_addr=parsed.from_addr,
            to_addr=parsed.to_addr,
            cc_addr=parsed.cc_addr,
            subject=parsed.subject,
            flags=flags,
            headers=headers,
            body_text=parsed.body_text,
            body_html=parsed.body_html,
            attachments=parsed.attachments[:MAX_ATTACHMENTS],
        )
        status = status_from(not issues, True)
        reporting.log_runtime_issues("imap_get_message", status, account_id, msg_id.mailbox, issues)
        return GetMessageResult(status=status, issues=issues, account_id=account_id, message=detail)

    def get_message_raw(self, account_id: str, message_id: str, max_bytes: int = 200_000) -> GetMessageRawResult:
        validate_account_id(account_id)
        validate_range(max_bytes, 1_024, 1_000_000, "max_bytes")
        msg_id = parse_and_validate_message_id(account_id, message_id)
        encoded = msg_id.encode()
        account = self._config.get_account(account_id)

        result = GetMessageRawResult(
            status=Status.FAILED,
            issues=[],
            account_id=account_id,
            message_id=encoded,
            message_uri=msg_id.message_uri(),
            message_raw_uri=msg_id.message_raw_uri(),
        )

        try:
            session = self._connect(self._config, account)
        except MailImapError as e:
            result.issues.append(Issue.from_error("connect_authenticated", e, message_id=encoded))
            reporting.log_runtime_issues("imap_get_message_raw", Status.FAILED, account_id, msg_id.mailbox, result.issues)
            return result

        with session:
            ensure_uidvalidity(session, msg_id, readonly=True)
            try:
                raw = session.fetch_raw(msg_id.uid)
            except MailImapError as e:
                result.issues.append(
                    Issue.from_error("fetch_raw_message", e, uid=msg_id.uid, message_id=encoded)
                )
                reporting.log_runtime_issues(
                    "imap_get_message_raw", Status.FAILED, account_id, msg_id.mailbox, result.issues
                )
                return result

        if len(raw) > max_bytes:
            raise InvalidInputError("message exceeds max_bytes; increase max_bytes")

        result.status = Status.OK
        result.size_bytes = len(raw)
        result.raw_source_base64 = base64.b64encode(raw).decode("ascii")
        result.raw_source_encoding = "base64"
        return result
