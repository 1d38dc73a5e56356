"""
MCP tool definitions with hand-written input schemas.
"""

from __future__ import annotations

from mcp.types import Tool

_ACCOUNT_ID = {
    "type": "string",
    "description": "Account identifier (default: 'default')",
    "default": "default",
}
_MESSAGE_ID = {
    "type": "string",
    "description": "Stable message id: imap:{account_id}:{mailbox}:{uidvalidity}:{uid}",
}
_FLAG_LIST = {"type": "array", "items": {"type": "string"}}


def _schema(properties: dict, required: list[str] | None = None) -> dict:
    schema = {"type": "object", "properties": properties, "additionalProperties": False}
    if required:
        schema["required"] = required
    return schema


TOOLS = [
    Tool(
        name="imap_list_accounts",
        description="List configured IMAP accounts",
        inputSchema=_schema({}),
    ),
    Tool(
        name="imap_verify_account",
        description="Verify account connectivity and capabilities",
        inputSchema=_schema({"account_id": _ACCOUNT_ID}),
    ),
    Tool(
        name="imap_list_mailboxes",
        description="List mailboxes for an account",
        inputSchema=_schema({"account_id": _ACCOUNT_ID}),
    ),
    Tool(
        name="imap_search_messages",
        description="Search messages with cursor pagination",
        inputSchema=_schema(
            {
                "account_id": _ACCOUNT_ID,
                "mailbox": {"type": "string", "description": "Mailbox to search, e.g. INBOX"},
                "cursor": {
                    "type": "string",
                    "description": "Continuation token from a previous page; cannot be combined with filters",
                },
                "query": {"type": "string", "description": "Full-text search (IMAP TEXT)"},
                "from": {"type": "string", "description": "Sender substring"},
                "to": {"type": "string", "description": "Recipient substring"},
                "subject": {"type": "string", "description": "Subject substring"},
                "unread_only": {"type": "boolean", "description": "Only unseen messages"},
                "last_days": {
                    "type": "integer",
                    "description": "Messages from the last N days (1-365)",
                    "minimum": 1,
                    "maximum": 365,
                },
                "start_date": {"type": "string", "description": "Inclusive start date YYYY-MM-DD"},
                "end_date": {"type": "string", "description": "Inclusive end date YYYY-MM-DD"},
                "limit": {
                    "type": "integer",
                    "description": "Maximum messages per page (1-50, default 10)",
                    "minimum": 1,
                    "maximum": 50,
                    "default": 10,
                },
                "include_snippet": {
                    "type": "boolean",
                    "description": "Include a short snippet per message",
                    "default": False,
                },
                "snippet_max_chars": {
                    "type": "integer",
                    "description": "Snippet length (50-500, default 200); requires include_snippet",
                    "minimum": 50,
                    "maximum": 500,
                },
            },
            required=["mailbox"],
        ),
    ),
    Tool(
        name="imap_get_message",
        description="Get parsed message details",
        inputSchema=_schema(
            {
                "account_id": _ACCOUNT_ID,
                "message_id": _MESSAGE_ID,
                "body_max_chars": {
                    "type": "integer",
                    "description": "Maximum body characters (100-20000, default 2000)",
                    "minimum": 100,
                    "maximum": 20000,
                    "default": 2000,
                },
                "include_headers": {"type": "boolean", "default": True},
                "include_all_headers": {"type": "boolean", "default": False},
                "include_html": {"type": "boolean", "default": False},
                "extract_attachment_text": {"type": "boolean", "default": False},
                "attachment_text_max_chars": {
                    "type": "integer",
                    "description": "Maximum extracted PDF text (100-50000, default 10000)",
                    "minimum": 100,
                    "maximum": 50000,
                },
            },
            required=["message_id"],
        ),
    ),
    Tool(
        name="imap_get_message_raw",
        description="Get bounded RFC822 source",
        inputSchema=_schema(
            {
                "account_id": _ACCOUNT_ID,
                "message_id": _MESSAGE_ID,
                "max_bytes": {
                    "type": "integer",
                    "description": "Maximum message size (1024-1000000, default 200000)",
                    "minimum": 1024,
                    "maximum": 1000000,
                    "default": 200000,
                },
            },
            required=["message_id"],
        ),
    ),
    Tool(
        name="imap_update_message_flags",
        description="Add or remove IMAP flags (requires MAIL_IMAP_WRITE_ENABLED=true)",
        inputSchema=_schema(
            {
                "account_id": _ACCOUNT_ID,
                "message_id": _MESSAGE_ID,
                "add_flags": _FLAG_LIST,
                "remove_flags": _FLAG_LIST,
            },
            required=["message_id"],
        ),
    ),
    Tool(
        name="imap_copy_message",
        description="Copy a message to a mailbox, optionally in another account "
        "(requires MAIL_IMAP_WRITE_ENABLED=true)",
        inputSchema=_schema(
            {
                "account_id": _ACCOUNT_ID,
                "message_id": _MESSAGE_ID,
                "destination_mailbox": {"type": "string"},
                "destination_account_id": {"type": "string"},
            },
            required=["message_id", "destination_mailbox"],
        ),
    ),
    Tool(
        name="imap_move_message",
        description="Move a message to a mailbox (requires MAIL_IMAP_WRITE_ENABLED=true)",
        inputSchema=_schema(
            {
                "account_id": _ACCOUNT_ID,
                "message_id": _MESSAGE_ID,
                "destination_mailbox": {"type": "string"},
            },
            required=["message_id", "destination_mailbox"],
        ),
    ),
    Tool(
        name="imap_delete_message",
        description="Delete a message; requires confirm=true (requires MAIL_IMAP_WRITE_ENABLED=true)",
        inputSchema=_schema(
            {
                "account_id": _ACCOUNT_ID,
                "message_id": _MESSAGE_ID,
                "confirm": {"type": "boolean", "description": "Must be true"},
            },
            required=["message_id", "confirm"],
        ),
    ),
]

TOOLS_BY_NAME = {tool.name: tool for tool in TOOLS}
