"""
Mutation Orchestrator
=====================

Flag update, copy, move and delete as ordered sequences of session verbs.

PRECONDITIONS (checked before any network activity, hard errors):
- Writes are globally enabled (``MAIL_IMAP_WRITE_ENABLED``).
- The message id parses and its embedded account matches the call's account.

CONSISTENCY:
- Before any state-changing verb the mailbox is re-selected and its
  UIDVALIDITY compared with the one embedded in the message id. Drift raises
  ConflictError and no mutating verb is issued.

ACCOUNTING:
- Each step is recorded in a StepLedger. Status is ``ok`` with no issues,
  ``partial`` when something succeeded, ``failed`` otherwise.
- Failed steps are reported, never rolled back. A move that fails after COPY
  leaves the message in both mailboxes and the ledger says so.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from mail_imap_mcp import reporting
from mail_imap_mcp.config import AccountConfig, ServerConfig
from mail_imap_mcp.contracts import (
    CopyResult,
    DeleteResult,
    FlagUpdateResult,
    InvalidInputError,
    Issue,
    MailImapError,
    MoveResult,
    Status,
    status_from,
)
from mail_imap_mcp.imap_client import ImapSession, SessionFactory, connect_authenticated
from mail_imap_mcp.message_id import MessageId, parse_and_validate_message_id
from mail_imap_mcp.messages import ensure_uidvalidity
from mail_imap_mcp.validation import (
    require_write_enabled,
    validate_account_id,
    validate_flags,
    validate_mailbox,
)

logger = logging.getLogger("mail-imap-mcp.mutations")

DELETED_FLAG = "\\Deleted"


@dataclass
class StepLedger:
    """Attempted/succeeded counters plus the issues collected along the way."""

    message_id: str
    steps_attempted: int = 0
    steps_succeeded: int = 0
    issues: list[Issue] = field(default_factory=list)

    def run(self, stage: str, action: Callable[[], Any], *, uid: int | None = None) -> tuple[bool, Any]:
        """Attempt one step. Returns ``(succeeded, value)``."""
        self.steps_attempted += 1
        try:
            value = action()
        except MailImapError as e:
            self.issues.append(Issue.from_error(stage, e, uid=uid, message_id=self.message_id))
            return False, None
        self.steps_succeeded += 1
        return True, value

    @property
    def status(self) -> Status:
        return status_from(not self.issues, self.steps_succeeded > 0)


# =============================================================================
# MOVE STRATEGIES
# =============================================================================


class MoveStrategy:
    """One way of moving a message, chosen once per call from capabilities."""

    name = ""

    def execute(self, session: ImapSession, uid: int, destination: str, ledger: StepLedger) -> None:
        raise NotImplementedError


class NativeMoveStrategy(MoveStrategy):
    """UID MOVE (RFC 6851)."""

    name = "move"

    def execute(self, session: ImapSession, uid: int, destination: str, ledger: StepLedger) -> None:
        ledger.run("uid_move", lambda: session.move(uid, destination), uid=uid)


class CopyDeleteMoveStrategy(MoveStrategy):
    """UID COPY, then +FLAGS \\Deleted, then UID EXPUNGE; each gated on the last."""

    name = "copy_delete_expunge"

    def execute(self, session: ImapSession, uid: int, destination: str, ledger: StepLedger) -> None:
        copied, _ = ledger.run("uid_copy", lambda: session.copy(uid, destination), uid=uid)
        if not copied:
            return
        flagged, _ = ledger.run("uid_store_deleted", lambda: session.add_flags(uid, [DELETED_FLAG]), uid=uid)
        if not flagged:
            return
        ledger.run("uid_expunge", lambda: session.expunge(uid), uid=uid)


def select_move_strategy(capabilities: list[str]) -> MoveStrategy:
    if "MOVE" in capabilities:
        return NativeMoveStrategy()
    return CopyDeleteMoveStrategy()


# =============================================================================
# ORCHESTRATOR
# =============================================================================


class MutationOrchestrator:
    def __init__(self, config: ServerConfig, connect: SessionFactory = connect_authenticated) -> None:
        self._config = config
        self._connect = connect

    def _prepare(self, account_id: str, message_id: str) -> MessageId:
        require_write_enabled(self._config.write_enabled)
        validate_account_id(account_id)
        return parse_and_validate_message_id(account_id, message_id)

    def update_flags(
        self,
        account_id: str,
        message_id: str,
        add_flags: list[str] | None = None,
        remove_flags: list[str] | None = None,
    ) -> FlagUpdateResult:
        """
        Apply ``+FLAGS.SILENT`` and ``-FLAGS.SILENT`` as two independent STOREs.

        Status reflects the STORE steps only. The final flag re-fetch is for
        display; its failure is reported as an issue without changing status.
        """
        require_write_enabled(self._config.write_enabled)
        validate_account_id(account_id)
        add = validate_flags(add_flags)
        remove = validate_flags(remove_flags)
        if not add and not remove:
            raise InvalidInputError("at least one of add_flags/remove_flags is required")
        msg_id = parse_and_validate_message_id(account_id, message_id)
        account = self._config.get_account(account_id)
        encoded = msg_id.encode()

        result = FlagUpdateResult(
            status=Status.FAILED,
            issues=[],
            account_id=account_id,
            message_id=encoded,
            flags=None,
            requested_add_flags=add,
            requested_remove_flags=remove,
        )

        try:
            session = self._connect(self._config, account)
        except MailImapError as e:
            result.issues.append(Issue.from_error("connect_authenticated", e, message_id=encoded))
            reporting.log_runtime_issues(
                "imap_update_message_flags", Status.FAILED, account_id, msg_id.mailbox, result.issues
            )
            return result

        ledger = StepLedger(message_id=encoded)
        with session:
            ensure_uidvalidity(session, msg_id, readonly=False)
            if add:
                result.applied_add_flags, _ = ledger.run(
                    "uid_store_add_flags", lambda: session.add_flags(msg_id.uid, add), uid=msg_id.uid
                )
            if remove:
                result.applied_remove_flags, _ = ledger.run(
                    "uid_store_remove_flags", lambda: session.remove_flags(msg_id.uid, remove), uid=msg_id.uid
                )
            result.status = ledger.status
            result.issues = ledger.issues
            try:
                result.flags = session.fetch_flags(msg_id.uid)
            except MailImapError as e:
                result.issues.append(Issue.from_error("fetch_flags", e, uid=msg_id.uid, message_id=encoded))

        reporting.log_runtime_issues(
            "imap_update_message_flags", result.status, account_id, msg_id.mailbox, result.issues
        )
        logger.info(f"Flag update on uid {msg_id.uid} in {msg_id.mailbox}: {result.status.value}")
        return result

    def copy_message(
        self,
        account_id: str,
        message_id: str,
        destination_mailbox: str,
        destination_account_id: str | None = None,
    ) -> CopyResult:
        """
        Copy a message within an account (UID COPY) or across accounts.

        Cross-account copy is staged as connect source, fetch raw, connect
        destination, APPEND; the first failure stops the sequence. The new
        message id is never known because APPENDUID is not used.
        """
        msg_id = self._prepare(account_id, message_id)
        validate_mailbox(destination_mailbox)
        destination_id = destination_account_id if destination_account_id is not None else account_id
        validate_account_id(destination_id)
        source = self._config.get_account(account_id)
        destination = self._config.get_account(destination_id)
        ledger = StepLedger(message_id=msg_id.encode())

        ok, session = ledger.run("connect_authenticated_source", lambda: self._connect(self._config, source))
        if ok:
            with session:
                if destination_id == account_id:
                    ensure_uidvalidity(session, msg_id, readonly=False)
                    ledger.run(
                        "uid_copy", lambda: session.copy(msg_id.uid, destination_mailbox), uid=msg_id.uid
                    )
                    raw = None
                else:
                    ensure_uidvalidity(session, msg_id, readonly=True)
                    _, raw = ledger.run(
                        "fetch_raw_message_source", lambda: session.fetch_raw(msg_id.uid), uid=msg_id.uid
                    )
            if raw is not None:
                self._append_to_destination(ledger, destination, destination_mailbox, raw)

        reporting.log_runtime_issues("imap_copy_message", ledger.status, account_id, msg_id.mailbox, ledger.issues)
        logger.info(
            f"Copy of uid {msg_id.uid} to {destination_id}/{destination_mailbox}: "
            f"{ledger.steps_succeeded}/{ledger.steps_attempted} steps"
        )
        return CopyResult(
            status=ledger.status,
            issues=ledger.issues,
            source_account_id=account_id,
            destination_account_id=destination_id,
            source_mailbox=msg_id.mailbox,
            destination_mailbox=destination_mailbox,
            message_id=msg_id.encode(),
            steps_attempted=ledger.steps_attempted,
            steps_succeeded=ledger.steps_succeeded,
        )

    def _append_to_destination(
        self, ledger: StepLedger, destination: AccountConfig, mailbox: str, raw: bytes
    ) -> None:
        ok, session = ledger.run(
            "connect_authenticated_destination", lambda: self._connect(self._config, destination)
        )
        if not ok:
            return
        with session:
            ledger.run("append_destination", lambda: session.append(mailbox, raw))

    def move_message(self, account_id: str, message_id: str, destination_mailbox: str) -> MoveResult:
        """
        Move a message within one account.

        One CAPABILITY query picks the strategy for the whole call: native
        UID MOVE when advertised, otherwise copy + \\Deleted + UID EXPUNGE.
        """
        msg_id = self._prepare(account_id, message_id)
        validate_mailbox(destination_mailbox)
        account = self._config.get_account(account_id)
        ledger = StepLedger(message_id=msg_id.encode())
        strategy = None

        ok, session = ledger.run("connect_authenticated", lambda: self._connect(self._config, account))
        if ok:
            with session:
                ensure_uidvalidity(session, msg_id, readonly=False)
                ok, capabilities = ledger.run("capabilities", session.capabilities, uid=msg_id.uid)
                if ok:
                    strategy = select_move_strategy(capabilities)
                    strategy.execute(session, msg_id.uid, destination_mailbox, ledger)

        reporting.log_runtime_issues("imap_move_message", ledger.status, account_id, msg_id.mailbox, ledger.issues)
        return MoveResult(
            status=ledger.status,
            issues=ledger.issues,
            account_id=account_id,
            source_mailbox=msg_id.mailbox,
            destination_mailbox=destination_mailbox,
            message_id=msg_id.encode(),
            steps_attempted=ledger.steps_attempted,
            steps_succeeded=ledger.steps_succeeded,
            strategy=strategy.name if strategy is not None else None,
        )

    def delete_message(self, account_id: str, message_id: str, confirm: bool) -> DeleteResult:
        """
        Flag ``\\Deleted`` then immediately UID EXPUNGE the same message.

        PRE: ``confirm`` is exactly ``True``
        """
        require_write_enabled(self._config.write_enabled)
        validate_account_id(account_id)
        if confirm is not True:
            raise InvalidInputError("delete requires confirm=true")
        msg_id = parse_and_validate_message_id(account_id, message_id)
        account = self._config.get_account(account_id)
        ledger = StepLedger(message_id=msg_id.encode())

        ok, session = ledger.run("connect_authenticated", lambda: self._connect(self._config, account))
        if ok:
            with session:
                ensure_uidvalidity(session, msg_id, readonly=False)
                flagged, _ = ledger.run(
                    "uid_store_deleted", lambda: session.add_flags(msg_id.uid, [DELETED_FLAG]), uid=msg_id.uid
                )
                if flagged:
                    ledger.run("uid_expunge", lambda: session.expunge(msg_id.uid), uid=msg_id.uid)

        reporting.log_runtime_issues("imap_delete_message", ledger.status, account_id, msg_id.mailbox, ledger.issues)
        logger.info(f"Delete of uid {msg_id.uid} in {msg_id.mailbox}: {ledger.status.value}")
        return DeleteResult(
            status=ledger.status,
            issues=ledger.issues,
            account_id=account_id,
            mailbox=msg_id.mailbox,
            message_id=msg_id.encode(),
            steps_attempted=ledger.steps_attempted,
            steps_succeeded=ledger.steps_succeeded,
        )
