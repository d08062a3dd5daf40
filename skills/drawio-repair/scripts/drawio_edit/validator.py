"""
Structural gate for diagram markup.

The validator decides accept / fix / reject. It reports only the first
violation found, in a fixed order, so the most actionable message reaches
the producing model first.
"""

import re
from collections import Counter
from typing import List, Optional

from defusedxml import ElementTree as ET
from defusedxml.common import DefusedXmlException

from xml_utils import iter_tags, parse_attributes

from .common import (
    CELL_TAG,
    CDATA_START_PATTERN,
    CHAR_REF_PATTERN,
    COMMENT_PATTERN,
    LABEL_ROLES,
    NAMED_ENTITY_PATTERN,
    STRUCTURAL_ATTRIBUTES,
    VALID_ENTITIES,
)

# Leading <?xml ...?> declaration, dropped before wrapping fragments
XML_DECLARATION_PATTERN = re.compile(r'^\s*<\?xml[^>]*\?>')

# Synthetic container so sibling cells (a fragment) parse as one tree
FRAGMENT_WRAPPER = '_fragment'

# & that neither starts a named entity nor a character reference
BARE_AMP_PATTERN = re.compile(r'&(?![a-zA-Z][a-zA-Z0-9]*;|#)')

PARSE_ERROR_MESSAGE = (
    "Invalid XML: The XML contains syntax errors (likely unescaped special characters "
    "like <, >, & in attribute values). Please escape special characters: use &lt; for <, "
    "&gt; for >, &amp; for &, &quot; for \". Regenerate the diagram with properly escaped values."
)


def _parse_fragment(xml: str):
    body = XML_DECLARATION_PATTERN.sub('', xml, count=1)
    return ET.fromstring(f'<{FRAGMENT_WRAPPER}>{body}</{FRAGMENT_WRAPPER}>')


def _check_nesting(tree) -> Optional[str]:
    for cell in tree.iter(CELL_TAG):
        for child in cell:
            if child.tag == CELL_TAG and child.get('as') not in LABEL_ROLES:
                cell_id = child.get('id') or 'unknown'
                return (
                    f'Invalid XML: Found nested mxCell (id="{cell_id}"). '
                    f'Cells should be siblings, not nested inside other mxCell elements.'
                )
    return None


def _check_attributes(xml: str) -> Optional[str]:
    """Duplicate structural attributes, then '<' inside attribute values."""
    tags = [t for t in iter_tags(xml) if t.kind != 'close']

    for tag in tags:
        counts = Counter(name for name, _ in parse_attributes(tag.text))
        duplicates = [name for name in STRUCTURAL_ATTRIBUTES if counts.get(name, 0) > 1]
        if duplicates:
            return (
                f"Invalid XML: Duplicate structural attribute(s): {', '.join(duplicates)}. "
                f"Remove duplicate attributes."
            )

    for tag in tags:
        for _, value in parse_attributes(tag.text):
            if '<' in value:
                return "Invalid XML: Unescaped < character in attribute values. Replace < with &lt;"
    return None


def _check_duplicate_ids(xml: str) -> Optional[str]:
    ids: List[str] = []
    for tag in iter_tags(xml):
        if tag.kind == 'close':
            continue
        for name, value in parse_attributes(tag.text):
            if name == 'id':
                if value.strip():
                    ids.append(value)
                break
    duplicates = [f"'{cell_id}' ({count}x)" for cell_id, count in Counter(ids).items() if count > 1]
    if duplicates:
        return (
            f"Invalid XML: Found duplicate ID(s): {', '.join(duplicates[:3])}. "
            f"All id attributes must be unique."
        )
    return None


def _check_tag_balance(xml: str) -> Optional[str]:
    stack: List[str] = []
    for tag in iter_tags(xml):
        if tag.kind == 'close':
            if not stack:
                return f"Invalid XML: Closing tag </{tag.name}> without matching opening tag"
            expected = stack.pop()
            if expected != tag.name:
                return f"Invalid XML: Expected closing tag </{expected}> but found </{tag.name}>"
        elif tag.kind == 'open':
            stack.append(tag.name)
    if stack:
        return f"Invalid XML: Document has {len(stack)} unclosed tag(s): {', '.join(stack)}"
    return None


def _check_character_references(text: str) -> Optional[str]:
    for match in CHAR_REF_PATTERN.finditer(text):
        is_hex = match.group(1) == 'x'
        digits = match.group(2)
        ref = match.group(0)
        kind = 'hex' if is_hex else 'decimal'
        if not match.group(3):
            return f"Invalid XML: Missing semicolon after {kind} reference: {ref}"
        allowed = r'[0-9a-fA-F]+' if is_hex else r'[0-9]+'
        if not re.fullmatch(allowed, digits):
            return f"Invalid XML: Invalid {kind} character reference: {ref}"
    return None


def _check_comments(xml: str) -> Optional[str]:
    for match in COMMENT_PATTERN.finditer(xml):
        if '--' in match.group(1):
            return "Invalid XML: Comment contains -- (double hyphen) which is not allowed"
    return None


def _check_entities(text: str) -> Optional[str]:
    if BARE_AMP_PATTERN.search(text):
        return "Invalid XML: Found unescaped & character(s). Replace & with &amp;"
    for match in NAMED_ENTITY_PATTERN.finditer(text):
        if match.group(1) not in VALID_ENTITIES:
            return (
                f"Invalid XML: Invalid entity reference: &{match.group(1)}; - "
                f"use only valid XML entities (lt, gt, amp, quot, apos)"
            )
    return None


def _check_text(xml: str) -> Optional[str]:
    """Checks that work on the raw text, whether or not it parses."""
    error = _check_attributes(xml) or _check_duplicate_ids(xml) or _check_tag_balance(xml)
    if error:
        return error

    without_comments = COMMENT_PATTERN.sub('', xml)
    return (
        _check_character_references(without_comments)
        or _check_comments(xml)
        or _check_entities(without_comments)
    )


def _check_empty_ids(xml: str) -> Optional[str]:
    for tag in iter_tags(xml):
        if tag.kind == 'close' or tag.name != CELL_TAG:
            continue
        for name, value in parse_attributes(tag.text):
            if name == 'id' and not value.strip():
                return "Invalid XML: Found mxCell element(s) with empty id attribute"
    return None


def validate_mxcell_structure(xml: str) -> Optional[str]:
    """
    Validate diagram markup (a full document or a fragment of cells).

    Checks run in a fixed order and the first failure wins:
    parse errors, nested cells, CDATA wrapper, duplicate structural
    attributes, '<' in attribute values, duplicate ids, tag balance,
    character references, comment syntax, bare '&', unknown entities,
    empty cell ids.

    The parse is the gate. Markup that does not parse is still run through
    the text-level checks so the caller gets the specific problem; the
    generic syntax error message is returned only when none of them fires.

    Args:
        xml: Markup text

    Returns:
        None if valid, otherwise a human readable error message
    """
    if not xml or not xml.strip():
        return "Invalid XML: Document is empty"

    try:
        tree = _parse_fragment(xml)
    except (ET.ParseError, DefusedXmlException):
        tree = None

    if tree is not None:
        error = _check_nesting(tree)
        if error:
            return error

    if CDATA_START_PATTERN.match(xml):
        return "Invalid XML: XML is wrapped in CDATA section - remove <![CDATA[ from start and ]]> from end"

    error = _check_text(xml)
    if error:
        return error
    if tree is None:
        return PARSE_ERROR_MESSAGE
    return _check_empty_ids(xml)
