"""
Search Orchestrator
===================

Per call: validate → resolve account → connect → EXAMINE (capture
UIDVALIDITY) → resume from cursor or run a new UID SEARCH → slice the page →
fetch per-message summaries → advance or retire the cursor → build result.

INVARIANTS:
- All input validation happens before any network activity.
- A cursor only resumes against the account, mailbox and UIDVALIDITY it was
  created for; epoch drift deletes the cursor and raises ConflictError.
- One bad message never blanks a page: per-message failures become issues
  and the message is skipped.
- Cursors are single-pass; an exhausted cursor is deleted immediately.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any

from mail_imap_mcp import reporting
from mail_imap_mcp.config import ServerConfig
from mail_imap_mcp.contracts import (
    ConflictError,
    InvalidInputError,
    Issue,
    MailImapError,
    MessageSummary,
    SearchResult,
    Status,
    status_from,
)
from mail_imap_mcp.cursor_store import MAX_CURSOR_UIDS_STORED, CursorEntry, CursorStore
from mail_imap_mcp.imap_client import ImapSession, SessionFactory, connect_authenticated
from mail_imap_mcp.message_id import MessageId
from mail_imap_mcp.mime import header_value, parse_header_bytes, truncate_chars
from mail_imap_mcp.validation import (
    parse_ymd,
    validate_account_id,
    validate_mailbox,
    validate_range,
    validate_search_text,
)

logger = logging.getLogger("mail-imap-mcp.search")

TOOL_NAME = "imap_search_messages"
MAX_SEARCH_LIMIT = 50
DEFAULT_SEARCH_LIMIT = 10
DEFAULT_SNIPPET_MAX_CHARS = 200


@dataclass
class SearchRequest:
    mailbox: str
    account_id: str = "default"
    cursor: str | None = None
    query: str | None = None
    from_addr: str | None = None
    to_addr: str | None = None
    subject: str | None = None
    unread_only: bool | None = None
    last_days: int | None = None
    start_date: str | None = None
    end_date: str | None = None
    limit: int = DEFAULT_SEARCH_LIMIT
    include_snippet: bool = False
    snippet_max_chars: int | None = None

    @classmethod
    def from_arguments(cls, arguments: dict[str, Any]) -> SearchRequest:
        """Build from tool arguments, where the address filters are ``from``/``to``."""
        values = dict(arguments)
        if "from" in values:
            values["from_addr"] = values.pop("from")
        if "to" in values:
            values["to_addr"] = values.pop("to")
        return cls(**values)

    def has_filters(self) -> bool:
        return any(
            value is not None
            for value in (
                self.query,
                self.from_addr,
                self.to_addr,
                self.subject,
                self.unread_only,
                self.last_days,
                self.start_date,
                self.end_date,
            )
        )


@dataclass
class _Snapshot:
    uids: list[int]
    offset: int
    include_snippet: bool
    snippet_max_chars: int
    cursor: str | None


def validate_search_request(request: SearchRequest) -> None:
    """
    Reject malformed or contradictory search input.

    ERRORS:
    - InvalidInputError: any bound, character, or combination violation
    """
    validate_account_id(request.account_id)
    validate_mailbox(request.mailbox)
    validate_range(request.limit, 1, MAX_SEARCH_LIMIT, "limit")
    if request.last_days is not None:
        validate_range(request.last_days, 1, 365, "last_days")
    if request.snippet_max_chars is not None:
        validate_range(request.snippet_max_chars, 50, 500, "snippet_max_chars")
        if not request.include_snippet:
            raise InvalidInputError("snippet_max_chars requires include_snippet=true")

    for field_name in ("query", "from_addr", "to_addr", "subject"):
        value = getattr(request, field_name)
        if value is not None:
            validate_search_text(value, "search text")

    if request.cursor is not None and request.has_filters():
        raise InvalidInputError("cursor cannot be combined with search criteria")
    if request.last_days is not None and (request.start_date is not None or request.end_date is not None):
        raise InvalidInputError("last_days cannot be combined with start_date/end_date")

    start = parse_ymd(request.start_date, "start_date") if request.start_date is not None else None
    end = parse_ymd(request.end_date, "end_date") if request.end_date is not None else None
    if start is not None and end is not None and start > end:
        raise InvalidInputError("start_date must be <= end_date")


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def build_search_criteria(request: SearchRequest) -> list[Any]:
    """Translate filters into ``IMAPClient.search`` criteria (``["ALL"]`` if none)."""
    criteria: list[Any] = []
    if request.query is not None:
        criteria += ["TEXT", request.query]
    if request.from_addr is not None:
        criteria += ["FROM", request.from_addr]
    if request.to_addr is not None:
        criteria += ["TO", request.to_addr]
    if request.subject is not None:
        criteria += ["SUBJECT", request.subject]
    if request.unread_only:
        criteria.append("UNSEEN")
    if request.last_days is not None:
        criteria += ["SINCE", _utc_today() - timedelta(days=request.last_days)]
    if request.start_date is not None:
        criteria += ["SINCE", parse_ymd(request.start_date, "start_date")]
    if request.end_date is not None:
        # BEFORE is exclusive, end_date is inclusive
        criteria += ["BEFORE", parse_ymd(request.end_date, "end_date") + timedelta(days=1)]
    return criteria or ["ALL"]


class SearchOrchestrator:
    """Runs paged searches, sharing one cursor store across calls."""

    def __init__(
        self,
        config: ServerConfig,
        cursors: CursorStore,
        connect: SessionFactory = connect_authenticated,
    ) -> None:
        self._config = config
        self._cursors = cursors
        self._connect = connect

    def search(self, request: SearchRequest) -> SearchResult:
        """
        Return one page of message summaries.

        ERRORS (hard, no partial result):
        - InvalidInputError: bad input, unknown/expired/mismatched cursor,
          oversized result set, or offset beyond the result set
        - ConflictError: mailbox UIDVALIDITY changed since the cursor was made
        - NotFoundError: account is not configured

        Connect, EXAMINE, and SEARCH failures produce a ``failed`` result.
        """
        validate_search_request(request)
        account = self._config.get_account(request.account_id)

        try:
            session = self._connect(self._config, account)
        except MailImapError as e:
            return self._failed(request, Issue.from_error("connect_authenticated", e))

        with session:
            try:
                uidvalidity = session.select(request.mailbox, readonly=True)
            except MailImapError as e:
                return self._failed(request, Issue.from_error("select_mailbox_readonly", e))

            if request.cursor is not None:
                snapshot = self._resume(request, uidvalidity)
            else:
                try:
                    snapshot = self._start(session, request)
                except (InvalidInputError, ConflictError):
                    raise
                except MailImapError as e:
                    return self._failed(request, Issue.from_error("uid_search", e))

            total = len(snapshot.uids)
            if snapshot.offset > total:
                raise InvalidInputError("cursor offset is out of range")

            page = snapshot.uids[snapshot.offset : snapshot.offset + request.limit]
            messages, issues = self._summaries(session, request, uidvalidity, page, snapshot)

        next_offset = snapshot.offset + len(page)
        next_cursor = self._advance_cursor(request, uidvalidity, snapshot, next_offset, total)

        status = status_from(not issues, bool(messages))
        reporting.log_runtime_issues(TOOL_NAME, status, request.account_id, request.mailbox, issues)
        logger.info(
            f"Search in {request.mailbox} returned {len(messages)} of {total} (offset {snapshot.offset})"
        )
        return SearchResult(
            status=status,
            issues=issues,
            next_action=reporting.for_search_result(
                status, request.account_id, request.mailbox, request.limit, next_cursor, messages
            ),
            account_id=request.account_id,
            mailbox=request.mailbox,
            total=total,
            attempted=len(page),
            returned=len(messages),
            failed=len(page) - len(messages),
            messages=messages,
            next_cursor=next_cursor,
            has_more=next_cursor is not None,
        )

    def _failed(self, request: SearchRequest, issue: Issue) -> SearchResult:
        issues = [issue]
        reporting.log_runtime_issues(TOOL_NAME, Status.FAILED, request.account_id, request.mailbox, issues)
        return SearchResult(
            status=Status.FAILED,
            issues=issues,
            next_action=reporting.retry_verify(request.account_id),
            account_id=request.account_id,
            mailbox=request.mailbox,
        )

    def _resume(self, request: SearchRequest, uidvalidity: int) -> _Snapshot:
        token = request.cursor
        entry = self._cursors.get(token)
        if entry is None:
            raise InvalidInputError("cursor is invalid or expired")
        if entry.account_id != request.account_id or entry.mailbox != request.mailbox:
            raise InvalidInputError("cursor does not match account/mailbox")
        if entry.uidvalidity != uidvalidity:
            self._cursors.delete(token)
            raise ConflictError("mailbox snapshot changed; rerun search")
        return _Snapshot(
            uids=entry.uids,
            offset=entry.offset,
            include_snippet=entry.include_snippet,
            snippet_max_chars=entry.snippet_max_chars,
            cursor=token,
        )

    def _start(self, session: ImapSession, request: SearchRequest) -> _Snapshot:
        uids = session.search(build_search_criteria(request))
        if len(uids) > MAX_CURSOR_UIDS_STORED:
            raise InvalidInputError(
                f"search matched {len(uids)} messages; narrow filters to at most "
                f"{MAX_CURSOR_UIDS_STORED} results"
            )
        snippet_max_chars = request.snippet_max_chars
        if snippet_max_chars is None:
            snippet_max_chars = DEFAULT_SNIPPET_MAX_CHARS
        return _Snapshot(
            uids=uids,
            offset=0,
            include_snippet=request.include_snippet,
            snippet_max_chars=snippet_max_chars,
            cursor=None,
        )

    def _summaries(
        self,
        session: ImapSession,
        request: SearchRequest,
        uidvalidity: int,
        page: list[int],
        snapshot: _Snapshot,
    ) -> tuple[list[MessageSummary], list[Issue]]:
        messages: list[MessageSummary] = []
        issues: list[Issue] = []
        for uid in page:
            try:
                header_bytes, flags = session.fetch_headers_and_flags(uid)
            except MailImapError as e:
                issues.append(Issue.from_error("fetch_headers_and_flags", e, uid=uid))
                continue
            try:
                headers = parse_header_bytes(header_bytes)
            except MailImapError as e:
                issues.append(Issue.from_error("parse_header_bytes", e, uid=uid))
                continue

            subject = header_value(headers, "subject")
            snippet = None
            if snapshot.include_snippet and subject is not None:
                snippet = truncate_chars(subject, snapshot.snippet_max_chars)

            message_id = MessageId(request.account_id, request.mailbox, uidvalidity, uid)
            messages.append(
                MessageSummary(
                    message_id=message_id.encode(),
                    message_uri=message_id.message_uri(),
                    message_raw_uri=message_id.message_raw_uri(),
                    mailbox=request.mailbox,
                    uidvalidity=uidvalidity,
                    uid=uid,
                    date=header_value(headers, "date"),
                    from_addr=header_value(headers, "from"),
                    subject=subject,
                    flags=flags,
                    snippet=snippet,
                )
            )
        return messages, issues

    def _advance_cursor(
        self,
        request: SearchRequest,
        uidvalidity: int,
        snapshot: _Snapshot,
        next_offset: int,
        total: int,
    ) -> str | None:
        if next_offset >= total:
            if snapshot.cursor is not None:
                self._cursors.delete(snapshot.cursor)
            return None
        if snapshot.cursor is not None:
            self._cursors.update_offset(snapshot.cursor, next_offset)
            return snapshot.cursor
        return self._cursors.create(
            CursorEntry(
                account_id=request.account_id,
                mailbox=request.mailbox,
                uidvalidity=uidvalidity,
                uids=snapshot.uids,
                offset=next_offset,
                include_snippet=snapshot.include_snippet,
                snippet_max_chars=snapshot.snippet_max_chars,
            )
        )
