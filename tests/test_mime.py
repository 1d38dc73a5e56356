"""
Content Extractor Tests
=======================
"""

from email.message import EmailMessage
from unittest.mock import patch

import pytest

from mail_imap_mcp.mime import (
    curated_headers,
    header_value,
    parse_header_bytes,
    parse_message,
    sanitize_html,
    truncate_chars,
)


def multipart_with_attachments() -> bytes:
    msg = EmailMessage()
    msg["From"] = "Sender <sender@example.com>"
    msg["To"] = "Recipient <recipient@example.com>"
    msg["Subject"] = "Report"
    msg["Date"] = "Mon, 13 Jan 2026 10:00:00 +0000"
    msg.set_content("Plain body")
    msg.add_alternative("<p onclick='x()'>HTML <b>body</b></p><script>alert(1)</script>", subtype="html")
    msg.add_attachment(b"%PDF-1.4 fake", maintype="application", subtype="pdf", filename="report.pdf")
    msg.add_attachment(b"a,b\n1,2\n", maintype="text", subtype="csv", filename="data.csv")
    return msg.as_bytes()


def parse(raw, **overrides):
    options = dict(
        body_max_chars=2000,
        include_html=False,
        extract_attachment_text=False,
        attachment_text_max_chars=10_000,
    )
    options.update(overrides)
    return parse_message(raw, **options)


class TestTruncation:
    def test_counts_code_points(self):
        assert truncate_chars("héllo wörld", 5) == "héllo"

    def test_never_splits_multibyte(self):
        text = "😀😀😀"
        assert truncate_chars(text, 2) == "😀😀"

    def test_short_text_unchanged(self):
        assert truncate_chars("abc", 10) == "abc"


class TestParsePlain:
    def test_header_fields(self, sample_raw_email):
        parsed = parse(sample_raw_email)
        assert parsed.subject == "Test Subject"
        assert parsed.from_addr == "Sender <sender@example.com>"
        assert parsed.to_addr == "Recipient <recipient@example.com>"
        assert parsed.cc_addr == "Copy <copy@example.com>"
        assert parsed.date == "Mon, 13 Jan 2026 10:00:00 +0000"
        assert parsed.body_text.strip() == "This is a test email body."
        assert parsed.body_html is None
        assert parsed.attachments == []

    def test_body_truncated(self, sample_raw_email):
        parsed = parse(sample_raw_email, body_max_chars=7)
        assert parsed.body_text == "This is"

    def test_encoded_word_subject(self):
        raw = b"Subject: =?utf-8?B?SMOpbGxv?=\r\nFrom: a@example.com\r\n\r\nbody\r\n"
        assert parse(raw).subject == "Héllo"

    def test_folded_header_unfolded(self):
        raw = b"Subject: part one\r\n part two\r\n\r\nbody\r\n"
        assert parse(raw).subject == "part one part two"


class TestParseMultipart:
    def test_bodies_and_attachments(self):
        parsed = parse(multipart_with_attachments(), include_html=True)

        assert parsed.body_text.strip() == "Plain body"
        assert "<b>body</b>" in parsed.body_html
        assert "script" not in parsed.body_html
        assert "onclick" not in parsed.body_html

        names = [(a.filename, a.content_type, a.part_id) for a in parsed.attachments]
        assert names == [
            ("report.pdf", "application/pdf", "1.2"),
            ("data.csv", "text/csv", "1.3"),
        ]
        assert parsed.attachments[1].size_bytes == len(b"a,b\n1,2\n")
        assert all(a.extracted_text is None for a in parsed.attachments)

    def test_html_omitted_unless_requested(self):
        assert parse(multipart_with_attachments()).body_html is None

    def test_pdf_text_extraction(self):
        with patch("mail_imap_mcp.mime._pdf_to_text", return_value="Quarterly numbers") as extract:
            parsed = parse(multipart_with_attachments(), extract_attachment_text=True, attachment_text_max_chars=100)
        extract.assert_called_once()
        assert parsed.attachments[0].extracted_text == "Quarterly numbers"
        assert parsed.attachments[1].extracted_text is None

    def test_unreadable_pdf_yields_no_text(self):
        parsed = parse(multipart_with_attachments(), extract_attachment_text=True, attachment_text_max_chars=100)
        assert parsed.attachments[0].extracted_text is None


class TestSanitizeHtml:
    def test_drops_script_and_event_handlers(self):
        html = '<div onmouseover="steal()">Hi<script>alert(1)</script><style>p{}</style></div>'
        assert sanitize_html(html) == "<div>Hi</div>"

    def test_strips_javascript_urls(self):
        html = '<a href="java\tscript:alert(1)">x</a><a href="https://example.com">y</a>'
        cleaned = sanitize_html(html)
        assert "javascript" not in cleaned.replace("\t", "")
        assert '<a href="https://example.com">y</a>' in cleaned

    def test_unknown_tags_unwrapped(self):
        assert sanitize_html("<custom>text</custom>") == "text"

    def test_comments_removed(self):
        assert sanitize_html("<p>a<!-- hidden --></p>") == "<p>a</p>"

    def test_relative_and_cid_urls_kept(self):
        cleaned = sanitize_html('<img src="cid:logo"><a href="/path">p</a>')
        assert 'src="cid:logo"' in cleaned
        assert 'href="/path"' in cleaned


class TestHeaders:
    def test_parse_header_bytes(self):
        headers = parse_header_bytes(b"Subject: Hi\r\nFrom: a@example.com\r\n\r\n")
        assert header_value(headers, "SUBJECT") == "Hi"
        assert header_value(headers, "cc") is None

    def test_curated_headers(self, sample_raw_email):
        headers = parse(sample_raw_email).headers
        curated = dict(curated_headers(headers, include_all=False))
        assert "X-Mailer" not in curated
        assert "Content-Type" not in curated
        assert curated["Message-ID"] == "<abc123@example.com>"

    def test_all_headers(self, sample_raw_email):
        headers = parse(sample_raw_email).headers
        assert ("X-Mailer", "TestMailer 1.0") in curated_headers(headers, include_all=True)


@pytest.mark.parametrize("limit", [1, 3])
def test_attachment_text_truncated(limit):
    with patch("mail_imap_mcp.mime._pdf_to_text", return_value="abcdef"):
        parsed = parse(multipart_with_attachments(), extract_attachment_text=True, attachment_text_max_chars=limit)
    assert parsed.attachments[0].extracted_text == "abcdef"[:limit]
