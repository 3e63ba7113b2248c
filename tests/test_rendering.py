"""Tests for Markdown rendering of compose text."""

import re
from email import message_from_bytes

from imap_webmail.emails.codec import build_message, build_mime_message
from imap_webmail.emails.models import ComposeAttachment, ComposeRequest
from imap_webmail.emails.rendering import INLINE_STYLES, render_markdown

TABLE = "| Name | Qty |\n| ---- | --- |\n| Apples | 3 |"


def _style_of(html: str, tag: str) -> str:
    match = re.search(rf'<{tag}\b[^>]*style="([^"]*)"', html)
    assert match, f"no styled <{tag}> in {html}"
    return match.group(1)


class TestRenderMarkdown:
    def test_emphasis_and_headings(self):
        html = render_markdown("# Agenda\n\nThis is **bold** and *italic*.", document=False)

        assert "<h1>Agenda</h1>" in html
        assert "<strong>bold</strong>" in html
        assert "<em>italic</em>" in html

    def test_table_cells_get_borders(self):
        html = render_markdown(TABLE, document=False)

        assert _style_of(html, "table") == INLINE_STYLES["table"]
        assert "border: 1px solid" in _style_of(html, "th")
        assert "border: 1px solid" in _style_of(html, "td")

    def test_column_alignment_survives_styling(self):
        html = render_markdown("| Qty |\n| --: |\n| 3 |", document=False)

        style = _style_of(html, "td")
        assert "border: 1px solid" in style
        assert "text-align: right" in style

    def test_blockquote_has_left_rule(self):
        html = render_markdown("> quoted reply", document=False)

        assert "border-left" in _style_of(html, "blockquote")

    def test_inline_code_and_links_are_styled(self):
        html = render_markdown("Run `make` or see [docs](https://example.com).", document=False)

        assert "monospace" in _style_of(html, "code")
        assert 'href="https://example.com"' in html
        assert _style_of(html, "a") == INLINE_STYLES["a"]

    def test_indented_code_block_is_styled(self):
        html = render_markdown("Example:\n\n    print('hi')", document=False)

        assert _style_of(html, "pre") == INLINE_STYLES["pre"]

    def test_fenced_code_block(self):
        html = render_markdown("```\nprint('hi')\n```", document=False)

        assert "<pre>" in html
        assert "print(&#x27;hi&#x27;)" in html or "print('hi')" in html

    def test_single_newline_is_a_line_break(self):
        assert "<br" in render_markdown("Line 1\nLine 2", document=False)

    def test_plain_paragraph_has_no_style(self):
        assert render_markdown("Simple text", document=False) == "<p>Simple text</p>"

    def test_document_wraps_fragment(self):
        html = render_markdown("Simple text")

        assert html.startswith("<!DOCTYPE html>")
        assert '<meta charset="utf-8">' in html
        assert "font-family: Arial" in _style_of(html, "body")
        assert "<p>Simple text</p>" in html

    def test_empty_input_still_a_document(self):
        html = render_markdown("")

        assert "<body" in html
        assert "<p>" not in html

    def test_renders_are_independent(self):
        first = render_markdown(TABLE, document=False)
        second = render_markdown(TABLE, document=False)

        assert first == second
        assert first.count("border-collapse") == 1


def _part(message, content_type):
    for part in message.walk():
        if part.get_content_type() == content_type:
            return part
    return None


def _compose(**overrides) -> ComposeRequest:
    fields = {"sender": "me@example.com", "to": "you@example.com", "subject": "Notes", "markdown": True}
    fields.update(overrides)
    return ComposeRequest(**fields)


class TestComposeWithMarkdown:
    def test_text_stays_source_and_html_is_rendered(self):
        message = build_mime_message(_compose(text="Totals:\n\n" + TABLE))

        assert message.get_content_type() == "multipart/alternative"
        html = _part(message, "text/html").get_payload(decode=True).decode("utf-8")
        plain = _part(message, "text/plain").get_payload(decode=True).decode("utf-8")
        assert "border: 1px solid" in html
        assert "| Apples | 3 |" in plain

    def test_rendered_html_sits_beside_attachments(self):
        compose = _compose(
            text="Please see the **attached** invoice.",
            attachments=[ComposeAttachment(filename="invoice.pdf", content=b"%PDF", content_type="application/pdf")],
        )

        message = message_from_bytes(build_message(compose))

        assert message.get_content_type() == "multipart/mixed"
        assert "<strong>attached</strong>" in _part(message, "text/html").get_payload(decode=True).decode("utf-8")
        assert _part(message, "application/pdf").get_filename() == "invoice.pdf"

    def test_without_markdown_text_is_sent_verbatim(self):
        message = build_mime_message(_compose(text="This is **not** rendered.", markdown=False))

        assert message.get_content_type() == "text/plain"
        assert "**not**" in message.get_payload(decode=True).decode("utf-8")

    def test_markdown_without_text_sends_no_html(self):
        message = build_mime_message(_compose(text=None, html=None))

        assert message.get_content_type() == "text/plain"

    def test_unicode_survives_rendering(self):
        message = build_mime_message(_compose(text="Grüße, café *naïve*"))

        html = _part(message, "text/html").get_payload(decode=True).decode("utf-8")
        assert "Grüße" in html
        assert "<em>naïve</em>" in html
