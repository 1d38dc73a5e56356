"""
Mail IMAP MCP Server
====================

Stateless MCP tools over per-call IMAP sessions: account verification,
mailbox listing, cursor-paginated search, message retrieval, and gated
flag/copy/move/delete mutations.
"""

__version__ = "0.1.0"

from mail_imap_mcp.config import AccountConfig, ServerConfig
from mail_imap_mcp.imap_client import ImapSession, connect_authenticated
from mail_imap_mcp.message_id import MessageId
from mail_imap_mcp.server import MailImapMCPServer, create_server

__all__ = [
    "AccountConfig",
    "ImapSession",
    "MailImapMCPServer",
    "MessageId",
    "ServerConfig",
    "connect_authenticated",
    "create_server",
]
