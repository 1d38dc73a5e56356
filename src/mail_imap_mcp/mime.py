"""
Content Extractor
=================

Turns raw RFC822 bytes into headers, bounded text/HTML bodies and attachment
metadata.

- HTML is sanitized before it leaves this module; raw markup never does.
- Truncation counts Unicode code points and never splits a character.
- Attachment text extraction is opportunistic: failure means no text, never
  an error.
"""

from __future__ import annotations

import email
import logging
import re
from dataclasses import dataclass, field
from email.header import decode_header
from email.message import Message
from email.parser import BytesHeaderParser
from io import BytesIO

from bs4 import BeautifulSoup, Comment
from pypdf import PdfReader

from mail_imap_mcp.contracts import AttachmentInfo, InternalError

logger = logging.getLogger("mail-imap-mcp.mime")

PDF_EXTRACT_MAX_BYTES = 5_000_000
CURATED_HEADERS = ("date", "from", "to", "cc", "subject", "message-id")

# Removed together with their content
_DROP_TAGS = [
    "script", "style", "iframe", "frame", "frameset", "object", "embed",
    "applet", "form", "input", "button", "select", "textarea", "link",
    "meta", "base", "noscript", "svg", "math", "template",
]
# Kept; any other tag is unwrapped so only its text survives
_ALLOWED_TAGS = {
    "a", "abbr", "b", "blockquote", "br", "caption", "code", "div", "em",
    "font", "h1", "h2", "h3", "h4", "h5", "h6", "hr", "i", "img", "li", "ol",
    "p", "pre", "s", "small", "span", "strong", "sub", "sup", "table",
    "tbody", "td", "tfoot", "th", "thead", "tr", "u", "ul",
}
_ALLOWED_ATTRS = {
    "href", "src", "alt", "title", "width", "height", "colspan", "rowspan",
    "align", "valign", "dir", "lang",
}
_URL_ATTRS = {"href", "src"}
_SAFE_SCHEMES = ("http:", "https:", "mailto:", "cid:")
_FOLD = re.compile(r"\r?\n[ \t]+")


@dataclass
class ParsedMessage:
    date: str | None = None
    from_addr: str | None = None
    to_addr: str | None = None
    cc_addr: str | None = None
    subject: str | None = None
    headers: list[tuple[str, str]] = field(default_factory=list)
    body_text: str | None = None
    body_html: str | None = None
    attachments: list[AttachmentInfo] = field(default_factory=list)


def truncate_chars(text: str, max_chars: int) -> str:
    return text[:max_chars]


def parse_message(
    raw: bytes,
    body_max_chars: int,
    include_html: bool,
    extract_attachment_text: bool,
    attachment_text_max_chars: int,
) -> ParsedMessage:
    """
    Parse an RFC822 message.

    The first non-attachment text/plain part is the text body and the first
    non-attachment text/html part the (sanitized) HTML body. Bodies are cut to
    ``body_max_chars``; HTML is returned only when ``include_html``.

    ERRORS:
    - InternalError: the message cannot be parsed at all
    """
    try:
        msg = email.message_from_bytes(raw)
        headers = _header_pairs(msg)
    except Exception as e:
        raise InternalError(f"failed to parse RFC822 message: {e}") from e

    parsed = ParsedMessage(headers=headers)
    _fill_header_fields(parsed, headers)
    _walk(msg, "1", parsed, extract_attachment_text, attachment_text_max_chars)

    if parsed.body_text is not None:
        parsed.body_text = truncate_chars(parsed.body_text, body_max_chars)
    if parsed.body_html is not None and include_html:
        parsed.body_html = truncate_chars(parsed.body_html, body_max_chars)
    else:
        parsed.body_html = None
    return parsed


def parse_header_bytes(header_bytes: bytes) -> list[tuple[str, str]]:
    """Parse a bare header block (as fetched with HEADER.FIELDS) into pairs."""
    try:
        return _header_pairs(BytesHeaderParser().parsebytes(header_bytes))
    except Exception as e:
        raise InternalError(f"failed to parse message headers: {e}") from e


def header_value(headers: list[tuple[str, str]], name: str) -> str | None:
    """First value for ``name``, compared case-insensitively."""
    wanted = name.lower()
    for key, value in headers:
        if key.lower() == wanted:
            return value
    return None


def curated_headers(headers: list[tuple[str, str]], include_all: bool) -> list[tuple[str, str]]:
    if include_all:
        return list(headers)
    return [(k, v) for k, v in headers if k.lower() in CURATED_HEADERS]


def sanitize_html(html: str) -> str:
    """Reduce HTML to a small allow-list of tags and attributes."""
    soup = BeautifulSoup(html, "html.parser")

    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()
    for tag in soup.find_all(_DROP_TAGS):
        tag.decompose()

    for tag in soup.find_all(True):
        if tag.name not in _ALLOWED_TAGS:
            tag.unwrap()
            continue
        for attr in list(tag.attrs):
            name = attr.lower()
            value = tag.attrs[attr]
            if name not in _ALLOWED_ATTRS:
                del tag.attrs[attr]
            elif name in _URL_ATTRS and not _is_safe_url(value):
                del tag.attrs[attr]

    return str(soup)


def _is_safe_url(value: object) -> bool:
    if not isinstance(value, str):
        return False
    # Browsers ignore embedded whitespace and control chars in schemes
    compact = "".join(ch for ch in value if not ch.isspace() and ord(ch) >= 0x20).lower()
    if ":" not in compact.split("/", 1)[0]:
        return True
    return compact.startswith(_SAFE_SCHEMES)


# =============================================================================
# Internals
# =============================================================================


def _decode_header(value: str) -> str:
    """Decode RFC 2047 encoded words and unfold continuation lines."""
    value = _FOLD.sub(" ", value)
    decoded = []
    for part, charset in decode_header(value):
        if isinstance(part, bytes):
            try:
                decoded.append(part.decode(charset or "utf-8", errors="replace"))
            except LookupError:
                decoded.append(part.decode("utf-8", errors="replace"))
        else:
            decoded.append(part)
    return "".join(decoded)


def _header_pairs(msg: Message) -> list[tuple[str, str]]:
    return [(key, _decode_header(str(value))) for key, value in msg.items()]


def _fill_header_fields(parsed: ParsedMessage, headers: list[tuple[str, str]]) -> None:
    parsed.date = header_value(headers, "date")
    parsed.from_addr = header_value(headers, "from")
    parsed.to_addr = header_value(headers, "to")
    parsed.cc_addr = header_value(headers, "cc")
    parsed.subject = header_value(headers, "subject")


def _walk(
    part: Message,
    part_id: str,
    parsed: ParsedMessage,
    extract_attachment_text: bool,
    attachment_text_max_chars: int,
) -> None:
    if part.get_content_maintype() == "multipart" and part.is_multipart():
        for index, sub in enumerate(part.get_payload(), start=1):
            _walk(sub, f"{part_id}.{index}", parsed, extract_attachment_text, attachment_text_max_chars)
        return

    content_type = part.get_content_type().lower()
    filename = part.get_filename()
    if filename is not None:
        filename = _decode_header(filename)
    is_attachment = part.get_content_disposition() == "attachment" or filename is not None

    if not is_attachment:
        if content_type == "text/plain" and parsed.body_text is None:
            parsed.body_text = _decode_payload(part)
        elif content_type == "text/html" and parsed.body_html is None:
            parsed.body_html = sanitize_html(_decode_payload(part))
        return

    payload = _payload_bytes(part)
    extracted_text = None
    if (
        extract_attachment_text
        and content_type == "application/pdf"
        and len(payload) <= PDF_EXTRACT_MAX_BYTES
    ):
        text = _pdf_to_text(payload)
        if text is not None:
            extracted_text = truncate_chars(text, attachment_text_max_chars)

    parsed.attachments.append(
        AttachmentInfo(
            filename=filename,
            content_type=content_type,
            size_bytes=len(payload),
            part_id=part_id,
            extracted_text=extracted_text,
        )
    )


def _decode_payload(part: Message) -> str:
    payload = part.get_payload(decode=True)
    if payload is None:
        return ""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def _payload_bytes(part: Message) -> bytes:
    payload = part.get_payload(decode=True)
    if payload is not None:
        return payload
    # message/rfc822 attachments carry a parsed sub-message instead of bytes
    if part.is_multipart():
        return b"".join(sub.as_bytes() for sub in part.get_payload())
    return b""


def _pdf_to_text(pdf_bytes: bytes) -> str | None:
    try:
        reader = PdfReader(BytesIO(pdf_bytes))
        pages = [(page.extract_text() or "").strip() for page in reader.pages]
    except Exception as e:
        logger.debug(f"PDF text extraction failed: {e}")
        return None
    return "\n\n".join(p for p in pages if p) or None
