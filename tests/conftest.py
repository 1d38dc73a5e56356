"""Shared fixtures: configuration, fake IMAP servers and sample messages."""

import pytest

from fakes import FakeConnector, FakeMailServer, make_message
from mail_imap_mcp.config import AccountConfig, ServerConfig


# =============================================================================
# TEST FIXTURES
# =============================================================================

@pytest.fixture
def accounts():
    return {
        "default": AccountConfig(
            account_id="default",
            host="imap.example.com",
            user="user@example.com",
            password="secret123",
        ),
        "work": AccountConfig(
            account_id="work",
            host="imap.work.example.com",
            user="user@work.example.com",
            password="work-secret",
        ),
    }


@pytest.fixture
def config(accounts):
    """Write-enabled configuration with two accounts."""
    return ServerConfig(accounts=accounts, write_enabled=True)


@pytest.fixture
def readonly_config(accounts):
    return ServerConfig(accounts=accounts, write_enabled=False)


@pytest.fixture
def mail_server():
    """Default account mailbox state: INBOX with three messages, empty Archive."""
    server = FakeMailServer()
    server.add_mailbox("INBOX", uidvalidity=1000)
    server.add_mailbox("Archive", uidvalidity=2000)
    server.add_message("INBOX", make_message(subject="First"), ["\\Seen"])
    server.add_message("INBOX", make_message(subject="Second"))
    server.add_message("INBOX", make_message(subject="Third"))
    return server


@pytest.fixture
def work_server():
    server = FakeMailServer()
    server.add_mailbox("INBOX", uidvalidity=5000)
    return server


@pytest.fixture
def connector(mail_server, work_server):
    return FakeConnector({"default": mail_server, "work": work_server})


@pytest.fixture
def sample_raw_email():
    """Raw email bytes for testing message parsing."""
    return b"""From: Sender <sender@example.com>
To: Recipient <recipient@example.com>
Cc: Copy <copy@example.com>
Subject: Test Subject
Date: Mon, 13 Jan 2026 10:00:00 +0000
Message-ID: <abc123@example.com>
X-Mailer: TestMailer 1.0
Content-Type: text/plain; charset="utf-8"

This is a test email body.
"""
