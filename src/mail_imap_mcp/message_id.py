"""
Message Identity Codec
======================

Stable message identifiers of the form::

    imap:{account_id}:{mailbox}:{uidvalidity}:{uid}

The mailbox may itself contain colons. Decoding reserves the first two
segments for scheme and account and the last two for UIDVALIDITY and UID;
everything in between is the mailbox.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import quote

from mail_imap_mcp.contracts import InvalidInputError
from mail_imap_mcp.validation import validate_mailbox

_U32_MAX = 2**32 - 1


@dataclass(frozen=True)
class MessageId:
    account_id: str
    mailbox: str
    uidvalidity: int
    uid: int

    @classmethod
    def parse(cls, raw: str) -> MessageId:
        """
        Decode a message id string.

        ERRORS:
        - InvalidInputError: fewer than 5 segments, wrong scheme, empty
          mailbox, or a non-u32 UIDVALIDITY/UID
        """
        parts = raw.split(":")
        if len(parts) < 5 or parts[0] != "imap":
            raise InvalidInputError("message_id must be imap:{account_id}:{mailbox}:{uidvalidity}:{uid}")

        uidvalidity = _parse_u32(parts[-2], "uidvalidity")
        uid = _parse_u32(parts[-1], "uid")
        mailbox = ":".join(parts[2:-2])
        if not mailbox:
            raise InvalidInputError("message_id mailbox cannot be empty")

        return cls(account_id=parts[1], mailbox=mailbox, uidvalidity=uidvalidity, uid=uid)

    def encode(self) -> str:
        return f"imap:{self.account_id}:{self.mailbox}:{self.uidvalidity}:{self.uid}"

    def message_uri(self) -> str:
        mailbox = quote(self.mailbox, safe="")
        return f"imap://{self.account_id}/mailbox/{mailbox}/message/{self.uidvalidity}/{self.uid}"

    def message_raw_uri(self) -> str:
        return f"{self.message_uri()}/raw"


def _parse_u32(segment: str, name: str) -> int:
    # int() alone would accept signs, underscores and surrounding whitespace
    if not segment.isascii() or not segment.isdigit():
        raise InvalidInputError(f"message_id {name} must be an unsigned 32-bit integer")
    value = int(segment)
    if value > _U32_MAX:
        raise InvalidInputError(f"message_id {name} must be an unsigned 32-bit integer")
    return value


def parse_and_validate_message_id(account_id: str, raw: str) -> MessageId:
    """Parse a message id and ensure it belongs to ``account_id``."""
    message_id = MessageId.parse(raw)
    validate_mailbox(message_id.mailbox)
    if message_id.account_id != account_id:
        raise InvalidInputError("message_id account does not match account_id")
    return message_id
