#!/usr/bin/env python3
"""
ABOUTME: Shared constants, data classes and exceptions for diagram editing
ABOUTME: Used by the validator, auto-fixer, merger and patch engine
"""

import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


# ============================================================
# Constants
# ============================================================

CELL_TAG = 'mxCell'
POINT_TAG = 'mxPoint'
POINT_LIST_TAG = 'Array'
ROOT_CONTAINER_TAG = 'root'

# Sentinel root cells every full document must contain
ROOT_CELL_ID = '0'
CANVAS_CELL_ID = '1'

# Attributes that must never appear twice in one tag
STRUCTURAL_ATTRIBUTES = ('edge', 'parent', 'source', 'target', 'vertex', 'connectable')

CELL_OPERATION_TYPES = ('add', 'update', 'delete')

# Named entities predefined by XML 1.0
VALID_ENTITIES = frozenset(['lt', 'gt', 'amp', 'quot', 'apos'])

# `as` role values that make an mxCell a label child rather than a diagram cell
LABEL_ROLES = frozenset(['valueLabel', 'geometry'])

# Closing tag typos seen in model output: (pattern, replacement, display name)
TAG_TYPOS = [
    (re.compile(r'</mxElement>', re.IGNORECASE), '</mxCell>', '</mxElement>'),
    (re.compile(r'</mxcell>'), '</mxCell>', '</mxcell>'),
    (re.compile(r'</mxgeometry>'), '</mxGeometry>', '</mxgeometry>'),
    (re.compile(r'</mxpoint>'), '</mxPoint>', '</mxpoint>'),
    (re.compile(r'</mxgraphmodel>', re.IGNORECASE), '</mxGraphModel>', '</mxgraphmodel>'),
]

# Double-escaped entities: (wrong, right)
DOUBLE_ESCAPED_ENTITIES = [
    ('&ampquot;', '&quot;'),
    ('&amplt;', '&lt;'),
    ('&ampgt;', '&gt;'),
    ('&ampapos;', '&apos;'),
    ('&ampamp;', '&amp;'),
]

# Matches: <![CDATA[ at the very start of the document
CDATA_START_PATTERN = re.compile(r'^\s*<!\[CDATA\[')
CDATA_END_PATTERN = re.compile(r'\]\]>\s*$')

# Comment with captured body
COMMENT_PATTERN = re.compile(r'<!--([\s\S]*?)-->')

# Character reference, payload stops at the first delimiter
# Matches: &#123; &#x1F; &#12 (missing ;) &#xZZ;
CHAR_REF_PATTERN = re.compile(r'&#(x?)([^;\s<>"\'&]*)(;?)')

# & that does not start a valid entity or character reference
BARE_AMPERSAND_PATTERN = re.compile(r'&(?!(?:lt|gt|amp|quot|apos|#[0-9]+|#x[0-9a-fA-F]+);)')

# Named entity reference
NAMED_ENTITY_PATTERN = re.compile(r'&([a-zA-Z][a-zA-Z0-9]*);')

# Attribute delimited by &quot; instead of a literal quote: label=&quot;text&quot;
MALFORMED_QUOTE_PATTERN = re.compile(
    r'(\s[a-zA-Z][a-zA-Z0-9_:-]*)=&quot;([^&]*(?:&(?!quot;)[^&]*)*)&quot;'
)

# Quoted attribute value inside a tag, value in group 3
QUOTED_VALUE_PATTERN = re.compile(r'(=\s*)(["\'])(.*?)\2', re.DOTALL)


# ============================================================
# Configuration
# ============================================================

def is_strict_patch_mode() -> bool:
    """
    Check if strict (reject on ambiguity) patch mode is enabled.

    Returns:
        True if DRAWIO_PATCH_STRICT is set to 'true', False otherwise
    """
    return os.getenv("DRAWIO_PATCH_STRICT", "").lower() == "true"


def get_format_indent() -> str:
    """
    Indentation unit used by the canonical formatter.

    Reads DRAWIO_FORMAT_INDENT (number of spaces, default 2). Invalid values
    fall back to the default.
    """
    raw = os.getenv("DRAWIO_FORMAT_INDENT", "2")
    try:
        width = int(raw)
    except ValueError:
        width = 2
    return ' ' * max(0, width)


# ============================================================
# Exceptions
# ============================================================

class DiagramEditError(ValueError):
    """Base class for errors reported back to the producing agent."""


class PatchNotFoundError(DiagramEditError):
    """A search pattern could not be located by any matching strategy."""

    def __init__(self, index: int, search: str):
        self.index = index
        self.search = search
        super().__init__(
            f"Edit #{index + 1} failed: Search pattern not found in the diagram. "
            f"The pattern may not exist in the current structure. "
            f"Search: '{format_text_preview(search, 120)}'"
        )


class AmbiguousPatchError(DiagramEditError):
    """Strict mode: the winning strategy matched more than one location."""

    def __init__(self, index: int, search: str, strategy: str, match_count: int):
        self.index = index
        self.search = search
        self.strategy = strategy
        self.match_count = match_count
        super().__init__(
            f"Edit #{index + 1} is ambiguous: {match_count} matches via {strategy}. "
            f"Include more surrounding lines to make the search unique. "
            f"Search: '{format_text_preview(search, 120)}'"
        )


class DiagramMergeError(DiagramEditError):
    """The merger could not parse the current document or the new nodes."""


class DiagramDecodeError(DiagramEditError):
    """A compressed page or exported SVG could not be decoded."""


# ============================================================
# Data Classes
# ============================================================

@dataclass
class EditOperation:
    """Single search/replace pair produced by the model"""
    search: str
    replace: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EditOperation':
        if 'search' not in data or 'replace' not in data:
            raise ValueError(f"Edit operation requires 'search' and 'replace': {data!r}")
        return cls(search=str(data['search']), replace=str(data['replace']))


@dataclass
class RepairResult:
    """Outcome of validate-then-repair"""
    valid: bool
    error: Optional[str] = None
    fixed: Optional[str] = None
    fixes: List[str] = field(default_factory=list)
    original_error: Optional[str] = None  # Validator message before any fix

    @property
    def repair_exhausted(self) -> bool:
        """True when fixes were attempted and the document is still invalid."""
        return not self.valid and self.original_error is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'valid': self.valid,
            'error': self.error,
            'fixed': self.fixed,
            'fixes': list(self.fixes),
        }


@dataclass
class PatchMatch:
    """Location chosen for one edit operation"""
    strategy: str
    start_line: int
    end_line: int                # Exclusive
    match_count: int = 1


@dataclass
class CellOperation:
    """Id-addressed change to a single cell"""
    type: str                    # add | update | delete
    cell_id: str
    new_xml: Optional[str] = None  # Complete <mxCell> markup for add/update

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CellOperation':
        op_type = data.get('type') or data.get('operation')
        cell_id = data.get('cell_id') or data.get('cellId')
        if op_type not in CELL_OPERATION_TYPES or not cell_id:
            raise ValueError(f"Cell operation requires a valid 'type' and 'cell_id': {data!r}")
        return cls(type=op_type, cell_id=str(cell_id), new_xml=data.get('new_xml') or data.get('newXml'))


@dataclass
class CellOperationError:
    """A cell operation that was skipped"""
    type: str
    cell_id: str
    message: str


@dataclass
class DisplayResult:
    """Outcome of merging a full regenerated diagram"""
    success: bool
    xml: Optional[str] = None
    error: Optional[str] = None
    fixes: List[str] = field(default_factory=list)


@dataclass
class EditResult:
    """Outcome of applying edit operations to the current diagram"""
    success: bool
    xml: Optional[str] = None
    error_message: Optional[str] = None
    fixes: List[str] = field(default_factory=list)
    matches: List[PatchMatch] = field(default_factory=list)
    current_xml: Optional[str] = None  # Document the failed edits were aimed at

    def to_tool_output(self) -> str:
        """Message relayed back to the producing agent."""
        if self.success:
            fixed = f" Auto-fixed: {'; '.join(self.fixes)}." if self.fixes else ""
            return f"Successfully applied {len(self.matches)} edit(s) to the diagram.{fixed}"
        return (
            f"Edit failed: {self.error_message}\n\n"
            f"Current diagram XML:\n```xml\n{self.current_xml or ''}\n```\n\n"
            f"Please retry with an adjusted search pattern or use display_diagram "
            f"if retries are exhausted."
        )


# ============================================================
# Helper Functions
# ============================================================

def coerce_edit(edit) -> EditOperation:
    """Accept EditOperation, {'search', 'replace'} dicts or 2-tuples."""
    if isinstance(edit, EditOperation):
        return edit
    if isinstance(edit, dict):
        return EditOperation.from_dict(edit)
    if isinstance(edit, (tuple, list)) and len(edit) == 2:
        return EditOperation(search=str(edit[0]), replace=str(edit[1]))
    raise ValueError(f"Unsupported edit operation: {edit!r}")


def format_text_preview(text: str, max_len: int = 30) -> str:
    """
    Format text for log output: remove newlines and truncate.

    Args:
        text: Text to format
        max_len: Maximum length before truncation

    Returns:
        Clean, truncated text with "..." suffix if truncated
    """
    clean = text.replace('\n', ' ').replace('\r', '').replace('\t', ' ')
    while '  ' in clean:
        clean = clean.replace('  ', ' ')
    clean = clean.strip()
    if len(clean) > max_len:
        return clean[:max_len] + "..."
    return clean


def is_label_cell_tag(tag: str) -> bool:
    """True for <mxCell as="valueLabel"> style children, which are not diagram cells."""
    match = re.search(r'\sas\s*=\s*["\']([^"\']*)["\']', tag)
    return bool(match and match.group(1) in LABEL_ROLES)
