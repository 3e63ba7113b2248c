"""HTML rendering of Markdown compose text.

Mail clients strip ``<style>`` blocks and ignore class names, so every element
that needs a look of its own gets it through a ``style`` attribute written
while the Markdown tree is still being built.
"""

from xml.etree.ElementTree import Element

import markdown
from markdown.extensions import Extension
from markdown.treeprocessors import Treeprocessor

MARKDOWN_EXTENSIONS = ["tables", "fenced_code", "sane_lists", "nl2br"]

INLINE_STYLES = {
    "table": "border-collapse: collapse;",
    "th": "border: 1px solid #ccc; padding: 4px 8px; background: #f4f4f4;",
    "td": "border: 1px solid #ccc; padding: 4px 8px;",
    "blockquote": "margin: 0 0 0 8px; padding-left: 8px; border-left: 3px solid #ccc; color: #555;",
    "code": "font-family: monospace; background: #f4f4f4;",
    "pre": "padding: 8px; background: #f4f4f4; overflow-x: auto;",
    "a": "color: #1a5fb4;",
}

BODY_STYLE = "font-family: Arial, Helvetica, sans-serif; font-size: 14px; line-height: 1.5; color: #222;"

HTML_DOCUMENT = (
    '<!DOCTYPE html>\n<html>\n<head><meta charset="utf-8"></head>\n<body style="{style}">\n{body}\n</body>\n</html>'
)


def add_inline_style(element: Element, style: str) -> None:
    """Prepend ``style`` to the element's own; attributes already set (table alignment) win."""
    existing = element.get("style")
    element.set("style", f"{style} {existing}" if existing else style)


class InlineStyleTreeprocessor(Treeprocessor):
    def run(self, root: Element) -> None:
        for element in root.iter():
            style = INLINE_STYLES.get(element.tag)
            if style:
                add_inline_style(element, style)


class InlineStyleExtension(Extension):
    def extendMarkdown(self, md: markdown.Markdown) -> None:
        # below the inline processor (20) so links and code spans exist already
        md.treeprocessors.register(InlineStyleTreeprocessor(md), "inline_style", 5)


def render_markdown(text: str, document: bool = True) -> str:
    """Render Markdown to HTML for the text/html alternative of a composed message.

    Fenced code blocks are stashed as raw HTML by the fenced_code extension and
    keep their plain ``<pre><code>`` markup; indented code blocks are styled.
    With ``document`` the fragment is wrapped in a minimal page whose body
    carries the base font settings.
    """
    converter = markdown.Markdown(
        extensions=[*MARKDOWN_EXTENSIONS, InlineStyleExtension()],
        extension_configs={"fenced_code": {"lang_prefix": ""}},
    )
    fragment = converter.convert(text)
    if not document:
        return fragment
    return HTML_DOCUMENT.format(style=BODY_STYLE, body=fragment)
