"""
REPLY FORMATTING
================

The chat UI drops replies straight into the page, so plain model text is turned
into HTML paragraphs: escape it, split on blank lines, wrap each paragraph in
<p>...</p>. History keeps the raw text; only responses are formatted.
"""

import html
import re

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


def format_reply_for_display(text: str) -> str:
    """'Hi.\\n\\nBye.' -> '<p>Hi.</p><p>Bye.</p>'. Empty input gives ''."""
    if not text or not text.strip():
        return ""
    paragraphs = [p.strip() for p in _PARAGRAPH_BREAK.split(text.strip())]
    return "".join(f"<p>{html.escape(p)}</p>" for p in paragraphs if p)
