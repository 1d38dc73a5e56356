"""
Mutation Orchestrator Tests
===========================

Flag update, copy, move and delete against the in-memory IMAP backend.
Every test checks both the returned step ledger and what actually happened
to the mailboxes.
"""

import pytest

from mail_imap_mcp.contracts import (
    AuthFailedError,
    ConflictError,
    InternalError,
    InvalidInputError,
    NotFoundError,
    Status,
)
from mail_imap_mcp.mutations import (
    CopyDeleteMoveStrategy,
    MutationOrchestrator,
    NativeMoveStrategy,
    StepLedger,
    select_move_strategy,
)

FIRST = "imap:default:INBOX:1000:1"
SECOND = "imap:default:INBOX:1000:2"
STALE = "imap:default:INBOX:999:1"


# =============================================================================
# TEST FIXTURES
# =============================================================================

@pytest.fixture
def mutations(config, connector):
    return MutationOrchestrator(config, connector)


@pytest.fixture
def readonly_mutations(readonly_config, connector):
    return MutationOrchestrator(readonly_config, connector)


def inbox(server):
    return server.mailboxes["INBOX"].messages


# =============================================================================
# WRITE GATE
# =============================================================================

class TestWriteGate:
    @pytest.mark.parametrize(
        "call",
        [
            lambda m: m.update_flags("default", FIRST, add_flags=["\\Flagged"]),
            lambda m: m.copy_message("default", FIRST, "Archive"),
            lambda m: m.move_message("default", FIRST, "Archive"),
            lambda m: m.delete_message("default", FIRST, confirm=True),
        ],
    )
    def test_writes_disabled(self, readonly_mutations, mail_server, call):
        with pytest.raises(InvalidInputError, match="MAIL_IMAP_WRITE_ENABLED"):
            call(readonly_mutations)
        assert mail_server.connections == 0


# =============================================================================
# FLAGS
# =============================================================================

class TestUpdateFlags:
    def test_add_flag(self, mutations, mail_server):
        result = mutations.update_flags("default", SECOND, add_flags=["\\Flagged", "$Work"])

        assert result.status is Status.OK
        assert result.applied_add_flags is True
        assert result.applied_remove_flags is False
        assert result.flags == ["\\Flagged", "$Work"]
        assert inbox(mail_server)[2].flags == ["\\Flagged", "$Work"]
        assert mail_server.verbs() == ["select", "add_flags", "fetch_flags"]

    def test_remove_flag(self, mutations, mail_server):
        result = mutations.update_flags("default", FIRST, remove_flags=["\\Seen"])

        assert result.status is Status.OK
        assert result.requested_remove_flags == ["\\Seen"]
        assert inbox(mail_server)[1].flags == []

    def test_requires_some_flag(self, mutations, mail_server):
        with pytest.raises(InvalidInputError, match="at least one"):
            mutations.update_flags("default", FIRST, add_flags=[], remove_flags=None)
        assert mail_server.connections == 0

    @pytest.mark.parametrize("flag", ["", "\\", "two words", 'quo"te', "(paren", "brace}", "back\\slash", "a\x00"])
    def test_invalid_flag(self, mutations, mail_server, flag):
        with pytest.raises(InvalidInputError):
            mutations.update_flags("default", FIRST, add_flags=[flag])
        assert mail_server.connections == 0

    def test_uidvalidity_mismatch_blocks_store(self, mutations, mail_server):
        with pytest.raises(ConflictError):
            mutations.update_flags("default", STALE, add_flags=["\\Flagged"])
        assert mail_server.mutating_verbs() == []

    def test_one_store_fails(self, mutations, mail_server):
        mail_server.fail("add_flags", InternalError("NO"))

        result = mutations.update_flags(
            "default", FIRST, add_flags=["\\Flagged"], remove_flags=["\\Seen"]
        )

        assert result.status is Status.PARTIAL
        assert result.applied_add_flags is False
        assert result.applied_remove_flags is True
        assert result.issues[0].stage == "uid_store_add_flags"
        assert result.issues[0].message_id == FIRST

    def test_flag_refetch_failure_does_not_change_status(self, mutations, mail_server):
        mail_server.fail("fetch_flags", InternalError("BAD"))

        result = mutations.update_flags("default", FIRST, add_flags=["\\Flagged"])

        assert result.status is Status.OK
        assert result.flags is None
        assert [issue.stage for issue in result.issues] == ["fetch_flags"]

    def test_connect_failure(self, mutations, mail_server):
        mail_server.connect_error = AuthFailedError("bad credentials")

        result = mutations.update_flags("default", FIRST, add_flags=["\\Flagged"])

        assert result.status is Status.FAILED
        assert result.issues[0].stage == "connect_authenticated"
        assert result.issues[0].code == "auth_failed"


# =============================================================================
# COPY
# =============================================================================

class TestCopyMessage:
    def test_same_account(self, mutations, mail_server):
        result = mutations.copy_message("default", FIRST, "Archive")

        assert result.status is Status.OK
        assert result.steps_attempted == 2
        assert result.steps_succeeded == 2
        assert result.destination_account_id == "default"
        assert result.new_message_id is None
        assert len(mail_server.mailboxes["Archive"].messages) == 1
        assert 1 in inbox(mail_server)
        assert mail_server.verbs() == ["select", "copy"]

    def test_cross_account(self, mutations, mail_server, work_server):
        result = mutations.copy_message("default", FIRST, "INBOX", destination_account_id="work")

        assert result.status is Status.OK
        assert result.steps_attempted == 4
        assert result.steps_succeeded == 4
        copied = list(inbox(work_server).values())
        assert [m.raw for m in copied] == [inbox(mail_server)[1].raw]
        assert mail_server.verbs() == ["examine", "fetch_raw"]
        assert work_server.verbs() == ["append"]

    def test_cross_account_destination_connect_fails(self, mutations, work_server):
        work_server.connect_error = AuthFailedError("bad credentials")

        result = mutations.copy_message("default", FIRST, "INBOX", destination_account_id="work")

        assert result.status is Status.PARTIAL
        assert result.steps_attempted == 3
        assert result.steps_succeeded == 2
        assert result.issues[0].stage == "connect_authenticated_destination"

    def test_cross_account_append_fails(self, mutations, work_server):
        result = mutations.copy_message("default", FIRST, "Nope", destination_account_id="work")

        assert result.status is Status.PARTIAL
        assert result.steps_attempted == 4
        assert result.issues[0].stage == "append_destination"

    def test_source_connect_fails(self, mutations, mail_server, work_server):
        mail_server.connect_error = InternalError("connection refused")

        result = mutations.copy_message("default", FIRST, "INBOX", destination_account_id="work")

        assert result.status is Status.FAILED
        assert result.steps_attempted == 1
        assert result.steps_succeeded == 0
        assert work_server.connections == 0

    def test_unknown_destination_account(self, mutations, mail_server):
        with pytest.raises(NotFoundError):
            mutations.copy_message("default", FIRST, "INBOX", destination_account_id="ghost")
        assert mail_server.connections == 0

    def test_invalid_destination_mailbox(self, mutations, mail_server):
        with pytest.raises(InvalidInputError):
            mutations.copy_message("default", FIRST, "")
        assert mail_server.connections == 0

    def test_uidvalidity_mismatch(self, mutations, mail_server, work_server):
        with pytest.raises(ConflictError):
            mutations.copy_message("default", STALE, "INBOX", destination_account_id="work")
        assert work_server.connections == 0
        assert "fetch_raw" not in mail_server.verbs()


# =============================================================================
# MOVE
# =============================================================================

class TestMoveMessage:
    def test_native_move(self, mutations, mail_server):
        result = mutations.move_message("default", FIRST, "Archive")

        assert result.status is Status.OK
        assert result.strategy == "move"
        assert result.steps_attempted == 3
        assert result.steps_succeeded == 3
        assert 1 not in inbox(mail_server)
        assert len(mail_server.mailboxes["Archive"].messages) == 1

    def test_fallback_without_move_capability(self, mutations, mail_server):
        mail_server.capabilities = ["IMAP4REV1", "UIDPLUS"]

        result = mutations.move_message("default", FIRST, "Archive")

        assert result.status is Status.OK
        assert result.strategy == "copy_delete_expunge"
        assert result.steps_attempted == 5
        assert result.steps_succeeded == 5
        assert mail_server.mutating_verbs() == ["copy", "add_flags", "expunge"]
        assert 1 not in inbox(mail_server)
        assert len(mail_server.mailboxes["Archive"].messages) == 1

    def test_fallback_store_failure_leaves_both_copies(self, mutations, mail_server):
        mail_server.capabilities = ["IMAP4REV1"]
        mail_server.fail("add_flags", InternalError("NO"))

        result = mutations.move_message("default", FIRST, "Archive")

        assert result.status is Status.PARTIAL
        assert result.steps_attempted == 4
        assert result.steps_succeeded == 3
        assert result.issues[0].stage == "uid_store_deleted"
        assert "expunge" not in mail_server.verbs()
        assert 1 in inbox(mail_server)
        assert len(mail_server.mailboxes["Archive"].messages) == 1

    def test_native_move_failure(self, mutations, mail_server):
        mail_server.fail("move", InternalError("NO [TRYCREATE]"))

        result = mutations.move_message("default", FIRST, "Archive")

        assert result.status is Status.PARTIAL
        assert result.issues[0].stage == "uid_move"
        assert 1 in inbox(mail_server)

    def test_connect_failure(self, mutations, mail_server):
        mail_server.connect_error = InternalError("connection refused")

        result = mutations.move_message("default", FIRST, "Archive")

        assert result.status is Status.FAILED
        assert result.strategy is None
        assert result.steps_attempted == 1

    def test_uidvalidity_mismatch(self, mutations, mail_server):
        with pytest.raises(ConflictError):
            mutations.move_message("default", STALE, "Archive")
        assert mail_server.mutating_verbs() == []

    def test_strategy_selection(self):
        assert isinstance(select_move_strategy(["IMAP4REV1", "MOVE"]), NativeMoveStrategy)
        assert isinstance(select_move_strategy(["IMAP4REV1"]), CopyDeleteMoveStrategy)


# =============================================================================
# DELETE
# =============================================================================

class TestDeleteMessage:
    def test_delete(self, mutations, mail_server):
        result = mutations.delete_message("default", SECOND, confirm=True)

        assert result.status is Status.OK
        assert result.steps_attempted == 3
        assert result.steps_succeeded == 3
        assert 2 not in inbox(mail_server)
        assert [args for verb, args in mail_server.calls if verb == "expunge"] == [(2,)]

    @pytest.mark.parametrize("confirm", [False, 1, "true", None])
    def test_requires_confirm_true(self, mutations, mail_server, confirm):
        with pytest.raises(InvalidInputError, match="confirm=true"):
            mutations.delete_message("default", SECOND, confirm=confirm)
        assert mail_server.connections == 0

    def test_expunge_failure(self, mutations, mail_server):
        mail_server.fail("expunge", InternalError("NO"))

        result = mutations.delete_message("default", SECOND, confirm=True)

        assert result.status is Status.PARTIAL
        assert result.steps_attempted == 3
        assert result.steps_succeeded == 2
        assert inbox(mail_server)[2].flags == ["\\Deleted"]

    def test_store_failure_skips_expunge(self, mutations, mail_server):
        mail_server.fail("add_flags", InternalError("NO"))

        result = mutations.delete_message("default", SECOND, confirm=True)

        assert result.status is Status.PARTIAL
        assert "expunge" not in mail_server.verbs()

    def test_uidvalidity_mismatch(self, mutations, mail_server):
        with pytest.raises(ConflictError):
            mutations.delete_message("default", STALE, confirm=True)
        assert mail_server.mutating_verbs() == []

    def test_foreign_message_id(self, mutations, mail_server):
        with pytest.raises(InvalidInputError, match="does not match"):
            mutations.delete_message("work", SECOND, confirm=True)
        assert mail_server.connections == 0


class TestStepLedger:
    def test_all_steps_fail(self):
        ledger = StepLedger(message_id=FIRST)

        def boom():
            raise InternalError("down")

        ok, value = ledger.run("connect_authenticated", boom)

        assert (ok, value) == (False, None)
        assert ledger.status is Status.FAILED
        assert ledger.steps_attempted == 1
        assert ledger.issues[0].message_id == FIRST

    def test_success(self):
        ledger = StepLedger(message_id=FIRST)
        assert ledger.run("noop", lambda: 42) == (True, 42)
        assert ledger.status is Status.OK
