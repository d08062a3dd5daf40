"""
This module applies search/replace edit operations to diagram markup.
Each search is located through a cascade of increasingly lenient matchers;
the first matcher that finds a location wins.
"""

import re
from collections import Counter
from typing import Callable, List, Optional, Sequence, Tuple

from .common import (
    AmbiguousPatchError,
    DiagramEditError,
    EditOperation,
    PatchMatch,
    PatchNotFoundError,
    coerce_edit,
    format_text_preview,
    is_strict_patch_mode,
)
from .formatter import format_xml

# id / value attribute of a cell, not matching e.g. data-id= or parent_id=
CELL_ID_ATTR_PATTERN = re.compile(r'(?<![\w:-])id="([^"]+)"')
CELL_VALUE_ATTR_PATTERN = re.compile(r'(?<![\w:-])value="([^"]*)"')

# Line holding an element that opens and closes on itself: <a>text</a>
INLINE_ELEMENT_PATTERN = re.compile(r'^<[^/!?][^>]*>.*</[a-zA-Z_][\w:.-]*>$', re.DOTALL)

Span = Tuple[int, int]


def _line_depth_delta(line: str) -> int:
    """Depth change contributed by one canonical line."""
    stripped = line.strip()
    if not stripped.startswith('<'):
        return 0
    if stripped.startswith('</'):
        return -1
    if stripped.startswith(('<!', '<?')) or stripped.endswith('/>'):
        return 0
    if INLINE_ELEMENT_PATTERN.match(stripped):
        return 0
    return 1


def element_extent(lines: Sequence[str], start: int) -> int:
    """
    Return the (exclusive) end line of the element whose opening tag is lines[start].

    A self-closing or inline line is an element of its own. Otherwise lines
    are consumed until the depth returns to zero, or the document ends.
    """
    end = start + 1
    if _line_depth_delta(lines[start]) <= 0:
        return end
    depth = 1
    while end < len(lines) and depth > 0:
        depth += _line_depth_delta(lines[end])
        end += 1
    return end


def _normalize_whitespace(text: str) -> str:
    return re.sub(r'\s+', ' ', text).strip()


class FuzzyPatchEngine:
    """
    Applies edit operations in order, each one to the result of the previous.

    Matchers, in order of decreasing strictness:
        exact, trimmed, substring, char-frequency, id, value,
        normalized-whitespace

    The document is re-canonicalised after every splice, so applying edits
    [a, b] gives the same text as applying [a] and then [b].

    When several locations match, the first one is used. In strict mode
    (strict=True or DRAWIO_PATCH_STRICT=true) an ambiguous match raises
    AmbiguousPatchError instead.
    """

    def __init__(self, strict: Optional[bool] = None, verbose: bool = False, indent: Optional[str] = None):
        self.strict = is_strict_patch_mode() if strict is None else strict
        self.verbose = verbose
        self.indent = indent
        self.matches: List[PatchMatch] = []

    # ============================================================
    # Public API
    # ============================================================

    def apply(self, xml: str, edits) -> str:
        """
        Apply edit operations to xml.

        Args:
            xml: Current document markup
            edits: Sequence of EditOperation, {'search', 'replace'} dicts or pairs

        Returns:
            Patched canonical markup

        Raises:
            PatchNotFoundError: an edit's search text could not be located
            AmbiguousPatchError: strict mode and the match is not unique
            DiagramEditError: an edit has an empty search
        """
        self.matches = []
        result = format_xml(xml, self.indent)
        for index, raw_edit in enumerate(edits):
            edit = coerce_edit(raw_edit)
            result = self._apply_edit(result, edit, index)
        return result

    # ============================================================
    # Edit application
    # ============================================================

    def _line_matchers(self) -> List[Tuple[str, Optional[Callable]]]:
        # None marks the substring step, which works on the raw text
        return [
            ('exact', self._match_exact),
            ('trimmed', self._match_trimmed),
            ('substring', None),
            ('char-frequency', self._match_char_frequency),
            ('id', self._match_cell_id),
            ('value', self._match_cell_value),
            ('normalized-whitespace', self._match_normalized_whitespace),
        ]

    def _apply_edit(self, result: str, edit: EditOperation, index: int) -> str:
        if not edit.search.strip():
            raise DiagramEditError(f"Edit #{index + 1} failed: search pattern is empty")

        search_lines = format_xml(edit.search, self.indent).split('\n')
        result_lines = result.split('\n')

        for strategy, matcher in self._line_matchers():
            if matcher is None:
                patched = self._apply_substring(result, edit, index)
                if patched is not None:
                    return patched
                continue

            spans = matcher(result_lines, search_lines, edit.search)
            if not spans:
                continue
            start, end = spans[0]
            self._accept(PatchMatch(strategy, start, end, len(spans)), edit, index)

            replace_lines = edit.replace.split('\n')
            if replace_lines and replace_lines[-1] == '':
                replace_lines.pop()
            spliced = result_lines[:start] + replace_lines + result_lines[end:]
            return format_xml('\n'.join(spliced), self.indent)

        raise PatchNotFoundError(index, edit.search)

    def _apply_substring(self, result: str, edit: EditOperation, index: int) -> Optional[str]:
        """Direct substring replacement for single-line or partial-line searches."""
        needle = edit.search.strip()
        count = result.count(needle)
        if not count:
            return None
        pos = result.find(needle)
        line = result.count('\n', 0, pos)
        self._accept(PatchMatch('substring', line, line + needle.count('\n') + 1, count), edit, index)
        patched = result[:pos] + edit.replace.strip() + result[pos + len(needle):]
        return format_xml(patched, self.indent)

    def _accept(self, match: PatchMatch, edit: EditOperation, index: int):
        if self.strict and match.match_count > 1:
            raise AmbiguousPatchError(index, edit.search, match.strategy, match.match_count)
        self.matches.append(match)
        if self.verbose:
            ambiguity = f" (first of {match.match_count})" if match.match_count > 1 else ""
            print(f"  [Patch] Edit #{index + 1} matched via {match.strategy} "
                  f"at lines {match.start_line + 1}-{match.end_line}{ambiguity}: "
                  f"{format_text_preview(edit.search, 60)}")

    # ============================================================
    # Matchers (return every candidate span, in document order)
    # ============================================================

    @staticmethod
    def _windows(result_lines: Sequence[str], size: int, same) -> List[Span]:
        spans = []
        for i in range(len(result_lines) - size + 1):
            if same(i):
                spans.append((i, i + size))
        return spans

    def _match_exact(self, result_lines, search_lines, raw_search) -> List[Span]:
        size = len(search_lines)
        return self._windows(
            result_lines, size,
            lambda i: all(result_lines[i + j] == search_lines[j] for j in range(size)),
        )

    def _match_trimmed(self, result_lines, search_lines, raw_search) -> List[Span]:
        size = len(search_lines)
        trimmed = [line.strip() for line in search_lines]
        return self._windows(
            result_lines, size,
            lambda i: all(result_lines[i + j].strip() == trimmed[j] for j in range(size)),
        )

    def _match_char_frequency(self, result_lines, search_lines, raw_search) -> List[Span]:
        """Same characters per line in any order, e.g. reordered attributes."""
        size = len(search_lines)
        wanted = [Counter(line.strip()) for line in search_lines]
        lengths = [len(line.strip()) for line in search_lines]

        def same(i):
            for j in range(size):
                candidate = result_lines[i + j].strip()
                if len(candidate) != lengths[j] or Counter(candidate) != wanted[j]:
                    return False
            return True

        return self._windows(result_lines, size, same)

    def _match_attribute_extent(self, result_lines, pattern, raw_search) -> List[Span]:
        match = pattern.search(raw_search)
        if not match:
            return []
        needle = match.group(0)
        spans = []
        for i, line in enumerate(result_lines):
            found = pattern.search(line)
            if found and found.group(0) == needle:
                spans.append((i, element_extent(result_lines, i)))
        return spans

    def _match_cell_id(self, result_lines, search_lines, raw_search) -> List[Span]:
        """Element whose id equals the first id in the search, through its closing tag."""
        return self._match_attribute_extent(result_lines, CELL_ID_ATTR_PATTERN, raw_search)

    def _match_cell_value(self, result_lines, search_lines, raw_search) -> List[Span]:
        return self._match_attribute_extent(result_lines, CELL_VALUE_ATTR_PATTERN, raw_search)

    def _match_normalized_whitespace(self, result_lines, search_lines, raw_search) -> List[Span]:
        size = len(search_lines)
        wanted = _normalize_whitespace(' '.join(search_lines))
        return self._windows(
            result_lines, size,
            lambda i: _normalize_whitespace(' '.join(result_lines[i:i + size])) == wanted,
        )


def replace_xml_parts(xml_content: str, search_replace_pairs, strict: Optional[bool] = None,
                      verbose: bool = False) -> str:
    """
    Replace parts of diagram markup using search/replace pairs.

    Args:
        xml_content: Current document markup
        search_replace_pairs: Sequence of {'search', 'replace'} dicts, pairs or EditOperation
        strict: Reject ambiguous matches (default from DRAWIO_PATCH_STRICT)
        verbose: Print the matcher chosen for each edit

    Returns:
        Patched canonical markup
    """
    return FuzzyPatchEngine(strict=strict, verbose=verbose).apply(xml_content, search_replace_pairs)
