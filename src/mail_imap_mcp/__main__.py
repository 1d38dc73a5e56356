"""Entry point: ``python -m mail_imap_mcp`` or ``mail-imap-mcp``."""

from __future__ import annotations

import logging
import os
import sys

import anyio
from dotenv import load_dotenv

from mail_imap_mcp.config import ServerConfig
from mail_imap_mcp.contracts import MailImapError
from mail_imap_mcp.server import create_server

logger = logging.getLogger("mail-imap-mcp")


def _log_level(name: str) -> int:
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def main() -> None:
    load_dotenv()
    # stdout carries the MCP protocol; logs go to stderr and never include
    # credentials or message bodies
    logging.basicConfig(
        level=_log_level(os.environ.get("MAIL_IMAP_LOG_LEVEL", "INFO")),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    try:
        config = ServerConfig.from_env()
    except MailImapError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    logger.info(
        f"Starting mail-imap-mcp with {len(config.accounts)} account(s), "
        f"write_enabled={config.write_enabled}"
    )
    anyio.run(create_server(config).run)


if __name__ == "__main__":
    main()
