#!/usr/bin/env python3
"""
ABOUTME: XML utility functions for diagram markup processing
ABOUTME: Provides sanitization and a quote-aware markup tokenizer
"""

import re
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

# Element tag name at the start of a tag: <name or </name
TAG_NAME_PATTERN = re.compile(r'^<(/?)([a-zA-Z_][a-zA-Z0-9:_.-]*)')

# Attribute with a quoted value, value group excludes the quotes
ATTR_PATTERN = re.compile(r'([a-zA-Z_:][a-zA-Z0-9_:.-]*)\s*=\s*(?:"([^"]*)"|\'([^\']*)\')')


@dataclass
class MarkupToken:
    """One lexical unit of markup text"""
    kind: str                    # open | close | self_closing | comment | cdata | pi | decl | text
    text: str                    # Raw source text of the token
    start: int                   # Offset of the first character
    end: int                     # Offset one past the last character
    name: Optional[str] = None   # Element name for open/close/self_closing

    @property
    def is_tag(self) -> bool:
        return self.kind in ('open', 'close', 'self_closing')


def sanitize_xml_string(text: str) -> str:
    """
    Remove control characters that are illegal in XML 1.0.

    XML 1.0 allows: #x9 (tab), #xA (LF), #xD (CR), and #x20-#xD7FF, #xE000-#xFFFD, #x10000-#x10FFFF
    This function removes all other control characters (0x00-0x08, 0x0B, 0x0C, 0x0E-0x1F).

    Args:
        text: Text that may contain control characters

    Returns:
        Sanitized text safe for XML. Returns input unchanged if not a non-empty string.
    """
    if not text or not isinstance(text, str):
        return text
    # Keep: \t (0x09), \n (0x0A), \r (0x0D)
    illegal_chars = ''.join(
        chr(c) for c in range(0x20)
        if c not in (0x09, 0x0A, 0x0D)
    )
    return text.translate(str.maketrans('', '', illegal_chars))


def _find_tag_end(text: str, pos: int) -> int:
    """
    Find the index of the '>' that closes the tag starting at pos.

    Quoted attribute values are skipped so that '<' or '>' inside quotes does
    not end the tag early. Returns -1 if the tag is not terminated.
    """
    in_quote = False
    quote_char = ''
    i = pos + 1
    length = len(text)
    while i < length:
        c = text[i]
        if in_quote:
            if c == quote_char:
                in_quote = False
        elif c == '"' or c == "'":
            in_quote = True
            quote_char = c
        elif c == '>':
            return i
        i += 1
    return -1


def tokenize_markup(text: str) -> Iterator[MarkupToken]:
    """
    Split markup text into tags, comments, declarations and text runs.

    This is the single lexer shared by the formatter, the validator and the
    auto-fixer. It never raises: an unterminated construct at the end of the
    input is returned as a trailing 'text' token.

    Args:
        text: Markup text (well-formed or not)

    Yields:
        MarkupToken in source order, covering the whole input
    """
    pos = 0
    length = len(text)
    while pos < length:
        lt = text.find('<', pos)
        if lt == -1:
            yield MarkupToken('text', text[pos:], pos, length)
            return
        if lt > pos:
            yield MarkupToken('text', text[pos:lt], pos, lt)

        if text.startswith('<!--', lt):
            close = text.find('-->', lt + 4)
            kind, end = 'comment', (close + 3 if close != -1 else -1)
        elif text.startswith('<![CDATA[', lt):
            close = text.find(']]>', lt + 9)
            kind, end = 'cdata', (close + 3 if close != -1 else -1)
        elif text.startswith('<?', lt):
            close = text.find('?>', lt + 2)
            kind, end = 'pi', (close + 2 if close != -1 else -1)
        else:
            close = _find_tag_end(text, lt)
            kind, end = None, (close + 1 if close != -1 else -1)

        if end == -1:
            # Unterminated construct (e.g. truncated stream)
            yield MarkupToken('text', text[lt:], lt, length)
            return

        raw = text[lt:end]
        if kind is not None:
            yield MarkupToken(kind, raw, lt, end)
        elif raw.startswith('<!'):
            yield MarkupToken('decl', raw, lt, end)
        else:
            match = TAG_NAME_PATTERN.match(raw)
            if not match:
                # Stray '<' that does not start a tag
                yield MarkupToken('text', raw, lt, end)
            elif match.group(1) == '/':
                yield MarkupToken('close', raw, lt, end, match.group(2))
            elif raw.endswith('/>'):
                yield MarkupToken('self_closing', raw, lt, end, match.group(2))
            else:
                yield MarkupToken('open', raw, lt, end, match.group(2))
        pos = end


def iter_tags(text: str) -> Iterator[MarkupToken]:
    """Yield only element tags (open, close, self-closing), skipping comments and text."""
    for token in tokenize_markup(text):
        if token.is_tag:
            yield token


def parse_attributes(tag: str) -> List[Tuple[str, str]]:
    """
    Extract attributes from a single tag in source order.

    Duplicates are preserved, which is what the duplicate-attribute checks need.

    Examples:
        '<mxCell id="2" parent="1"/>' -> [('id', '2'), ('parent', '1')]
    """
    match = TAG_NAME_PATTERN.match(tag)
    body = tag[match.end():] if match else tag
    attrs = []
    for m in ATTR_PATTERN.finditer(body):
        value = m.group(2) if m.group(2) is not None else m.group(3)
        attrs.append((m.group(1), value))
    return attrs


def get_attribute(tag: str, name: str) -> Optional[str]:
    """Return the first value of attribute `name` in a tag, or None."""
    for attr_name, value in parse_attributes(tag):
        if attr_name == name:
            return value
    return None


def apply_splices(text: str, splices: List[Tuple[int, int, str]]) -> str:
    """
    Apply (start, end, replacement) edits to text.

    Splices must not overlap; they are applied back to front so earlier
    offsets stay valid.
    """
    result = text
    for start, end, replacement in sorted(splices, key=lambda s: (s[0], s[1]), reverse=True):
        result = result[:start] + replacement + result[end:]
    return result
