"""Canonical one-tag-per-line rendering of diagram markup."""

import re
from typing import Optional

from xml_utils import tokenize_markup

from .common import get_format_indent

# Quoted attribute value, kept verbatim when normalizing tag whitespace
QUOTED_SEGMENT_PATTERN = re.compile(r'("[^"]*"|\'[^\']*\')')


def _normalize_tag(text: str) -> str:
    """Collapse whitespace runs between attributes to one space, leaving quoted values alone."""
    parts = QUOTED_SEGMENT_PATTERN.split(text)
    return ''.join(part if idx % 2 else re.sub(r'\s+', ' ', part) for idx, part in enumerate(parts))


def format_xml(xml: str, indent: Optional[str] = None) -> str:
    """
    Format markup with one tag per line and consistent indentation.

    Whitespace between tags is dropped, every opening, closing and
    self-closing tag starts a new line, and depth grows after each
    non-self-closing opening tag. An element holding only text stays on one
    line (<a>text</a>), and a tag written over several lines is collapsed
    onto one. Malformed input is never rejected.

    The result is idempotent: format_xml(format_xml(x)) == format_xml(x).

    Args:
        xml: Markup text
        indent: Indentation unit (default from DRAWIO_FORMAT_INDENT, two spaces)

    Returns:
        Canonical text without trailing newline
    """
    if not xml:
        return ''
    if indent is None:
        indent = get_format_indent()

    tokens = [t for t in tokenize_markup(xml) if t.kind != 'text' or t.text.strip()]
    lines = []
    pad = 0
    i = 0
    while i < len(tokens):
        token = tokens[i]
        if token.kind == 'close':
            pad = max(0, pad - 1)
            lines.append(indent * pad + _normalize_tag(token.text))
        elif token.kind == 'open':
            if (i + 2 < len(tokens)
                    and tokens[i + 1].kind == 'text'
                    and tokens[i + 2].kind == 'close'
                    and tokens[i + 2].name == token.name):
                lines.append(indent * pad + _normalize_tag(token.text)
                             + tokens[i + 1].text.strip() + _normalize_tag(tokens[i + 2].text))
                i += 3
                continue
            lines.append(indent * pad + _normalize_tag(token.text))
            pad += 1
        elif token.kind == 'self_closing':
            lines.append(indent * pad + _normalize_tag(token.text))
        else:
            # Comments, declarations and loose text
            lines.append(indent * pad + token.text.strip())
        i += 1

    return '\n'.join(lines)
