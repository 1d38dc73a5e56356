"""
Mail IMAP MCP Server
====================

Binds the read, search and mutation orchestrators to MCP tools.

Every successful call returns one JSON text block::

    {"summary": "...", "data": {...}, "meta": {"now_utc": "...", "duration_ms": 12}}

A hard error (bad input, unknown account, conflict) returns::

    {"error": {"code": "invalid_input", "message": "...", "retryable": false}}

Blocking IMAP work runs in a worker thread per call; calls never share a
session. The cursor store is the only state shared between calls.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict
from datetime import datetime, timezone
from functools import partial
from typing import Any

import anyio
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from mail_imap_mcp import reporting
from mail_imap_mcp.config import ServerConfig
from mail_imap_mcp.contracts import InvalidInputError, MailImapError, Meta, Status, ToolEnvelope
from mail_imap_mcp.cursor_store import CursorStore
from mail_imap_mcp.imap_client import SessionFactory, connect_authenticated
from mail_imap_mcp.messages import MessageReader
from mail_imap_mcp.mutations import MutationOrchestrator
from mail_imap_mcp.schemas import TOOLS, TOOLS_BY_NAME
from mail_imap_mcp.search import SearchOrchestrator, SearchRequest

logger = logging.getLogger("mail-imap-mcp")

INSTRUCTIONS = (
    "Secure IMAP MCP server. Read operations are enabled by default; "
    "write tools require MAIL_IMAP_WRITE_ENABLED=true."
)

_JSON_TYPES = {
    "string": (str,),
    "integer": (int,),
    "boolean": (bool,),
    "array": (list,),
}


class MailImapMCPServer:
    """
    IMAP tools for AI agents.

    Read tools never alter message state. Write tools (flags, copy, move,
    delete) are refused unless writes are enabled in the configuration.
    """

    def __init__(self, config: ServerConfig, connect: SessionFactory = connect_authenticated) -> None:
        self._config = config
        self._cursors = CursorStore(config.cursor_ttl_seconds, config.cursor_max_entries)
        self._reader = MessageReader(config, connect)
        self._searcher = SearchOrchestrator(config, self._cursors, connect)
        self._mutations = MutationOrchestrator(config, connect)
        self._server = Server("mail-imap-mcp", instructions=INSTRUCTIONS)
        self._setup_tools()

    @property
    def cursors(self) -> CursorStore:
        return self._cursors

    def _setup_tools(self) -> None:
        """Register MCP tools."""

        @self._server.list_tools()
        async def list_tools() -> list[Tool]:
            return TOOLS

        @self._server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any] | None) -> list[TextContent]:
            text = await anyio.to_thread.run_sync(partial(self.call, name, arguments or {}))
            return [TextContent(type="text", text=text)]

    def call(self, name: str, arguments: dict[str, Any]) -> str:
        """Run one tool synchronously and return the JSON response text."""
        started = time.monotonic()
        try:
            summary, data = self._dispatch(name, arguments)
        except MailImapError as e:
            logger.error(f"hard mcp error tool={name} code={e.code} message={e}")
            return self._serialize_result(
                {"error": {"code": e.code, "message": str(e), "retryable": e.retryable}}
            )

        envelope = ToolEnvelope(
            summary=summary,
            data=data,
            meta=Meta(now_utc=_now_utc(), duration_ms=reporting.elapsed_ms(started)),
        )
        return self._serialize_result(envelope)

    def _dispatch(self, name: str, arguments: dict[str, Any]) -> tuple[str, Any]:
        arguments = _check_arguments(name, arguments)

        if name == "imap_list_accounts":
            result = self.imap_list_accounts()
            return f"{len(result.accounts)} account(s) configured", result
        elif name == "imap_verify_account":
            result = self.imap_verify_account(**arguments)
            if result.status is Status.FAILED:
                return "Account verification failed", result
            return "Account verification succeeded", result
        elif name == "imap_list_mailboxes":
            result = self.imap_list_mailboxes(**arguments)
            return f"{len(result.mailboxes)} mailbox(es)", result
        elif name == "imap_search_messages":
            result = self.imap_search_messages(**arguments)
            return f"{len(result.messages)} message(s) returned", result
        elif name == "imap_get_message":
            return "Message retrieved", self.imap_get_message(**arguments)
        elif name == "imap_get_message_raw":
            return "Raw message retrieved", self.imap_get_message_raw(**arguments)
        elif name == "imap_update_message_flags":
            return "Flags updated", self.imap_update_message_flags(**arguments)
        elif name == "imap_copy_message":
            return "Message copied", self.imap_copy_message(**arguments)
        elif name == "imap_move_message":
            return "Message moved", self.imap_move_message(**arguments)
        else:
            return "Message deleted", self.imap_delete_message(**arguments)

    # -------------------------------------------------------------------------
    # Tools
    # -------------------------------------------------------------------------

    def imap_list_accounts(self):
        return self._reader.list_accounts()

    def imap_verify_account(self, *, account_id: str = "default"):
        logger.info(f"Verifying account {account_id}")
        return self._reader.verify_account(account_id)

    def imap_list_mailboxes(self, *, account_id: str = "default"):
        logger.info(f"Listing mailboxes for {account_id}")
        return self._reader.list_mailboxes(account_id)

    def imap_search_messages(self, **arguments: Any):
        request = SearchRequest.from_arguments(arguments)
        logger.info(f"Searching {request.account_id}/{request.mailbox} with limit={request.limit}")
        return self._searcher.search(request)

    def imap_get_message(self, *, account_id: str = "default", message_id: str, **options: Any):
        logger.info(f"Fetching message {message_id}")
        return self._reader.get_message(account_id, message_id, **options)

    def imap_get_message_raw(self, *, account_id: str = "default", message_id: str, max_bytes: int = 200_000):
        logger.info(f"Fetching raw message {message_id}")
        return self._reader.get_message_raw(account_id, message_id, max_bytes)

    def imap_update_message_flags(
        self,
        *,
        account_id: str = "default",
        message_id: str,
        add_flags: list[str] | None = None,
        remove_flags: list[str] | None = None,
    ):
        return self._mutations.update_flags(account_id, message_id, add_flags, remove_flags)

    def imap_copy_message(
        self,
        *,
        account_id: str = "default",
        message_id: str,
        destination_mailbox: str,
        destination_account_id: str | None = None,
    ):
        return self._mutations.copy_message(account_id, message_id, destination_mailbox, destination_account_id)

    def imap_move_message(self, *, account_id: str = "default", message_id: str, destination_mailbox: str):
        return self._mutations.move_message(account_id, message_id, destination_mailbox)

    def imap_delete_message(self, *, account_id: str = "default", message_id: str, confirm: bool):
        return self._mutations.delete_message(account_id, message_id, confirm)

    def _serialize_result(self, result: Any) -> str:
        """Serialize result to JSON string."""

        def default_serializer(obj: Any) -> Any:
            if hasattr(obj, "__dataclass_fields__"):
                return asdict(obj)
            if hasattr(obj, "value"):  # Enum
                return obj.value
            raise TypeError(f"Cannot serialize {type(obj)}")

        return json.dumps(result, default=default_serializer, indent=2)

    async def run(self) -> None:
        """Run the MCP server over stdio."""
        async with stdio_server() as (read_stream, write_stream):
            await self._server.run(
                read_stream, write_stream, self._server.create_initialization_options()
            )


def _now_utc() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _check_arguments(name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Check arguments against the tool's input schema.

    Null values count as absent. Unknown names, missing required names and
    values of the wrong JSON type are rejected.
    """
    tool = TOOLS_BY_NAME.get(name)
    if tool is None:
        raise InvalidInputError(f"unknown tool '{name}'")

    properties = tool.inputSchema["properties"]
    present = {key: value for key, value in arguments.items() if value is not None}

    unknown = sorted(set(present) - set(properties))
    if unknown:
        raise InvalidInputError(f"unknown argument(s): {', '.join(unknown)}")
    missing = [key for key in tool.inputSchema.get("required", []) if key not in present]
    if missing:
        raise InvalidInputError(f"missing required argument(s): {', '.join(missing)}")

    for key, value in present.items():
        expected = properties[key].get("type")
        if expected is None:
            continue
        if isinstance(value, bool) and expected != "boolean":
            raise InvalidInputError(f"{key} must be of type {expected}")
        if not isinstance(value, _JSON_TYPES[expected]):
            raise InvalidInputError(f"{key} must be of type {expected}")
        if expected == "array" and not all(isinstance(item, str) for item in value):
            raise InvalidInputError(f"{key} must be an array of strings")
    return present


def create_server(config: ServerConfig, connect: SessionFactory = connect_authenticated) -> MailImapMCPServer:
    """Create a server instance."""
    return MailImapMCPServer(config, connect)
