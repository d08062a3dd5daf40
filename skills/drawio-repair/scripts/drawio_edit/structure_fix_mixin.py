"""
This mixin class holds the tag-level repair passes of the auto-fixer.
It encapsulates tag renames, unclosed tags, nested cells and id repairs.
"""

import re
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from xml_utils import apply_splices, get_attribute, iter_tags

from .common import CELL_TAG, TAG_TYPOS, is_label_cell_tag

# Generic <Cell> element written instead of <mxCell>
GENERIC_CELL_TAG_PATTERN = re.compile(r'<(/?)Cell(?=[\s/>])', re.IGNORECASE)

# id attribute with its quoted value in group 3
ID_ATTR_PATTERN = re.compile(r'(\sid\s*=\s*)(["\'])(.*?)\2', re.DOTALL)


@dataclass
class _OpenElement:
    name: str
    is_cell: bool
    cell_id: Optional[str] = None
    parent: Optional[str] = None


def _removal_span(xml: str, start: int, end: int) -> Tuple[int, int]:
    """Widen a tag span to its whole line when the tag stands alone on that line."""
    line_start = xml.rfind('\n', 0, start) + 1
    line_end = xml.find('\n', end)
    line_end = len(xml) if line_end == -1 else line_end
    if xml[line_start:start].strip() or xml[end:line_end].strip():
        return start, end
    if line_end < len(xml):
        return line_start, line_end + 1
    if line_start > 0:
        return line_start - 1, line_end
    return line_start, line_end


def _line_indent(xml: str, pos: int) -> Optional[str]:
    """Leading whitespace before pos, or None if other text precedes it on the line."""
    line_start = xml.rfind('\n', 0, pos) + 1
    prefix = xml[line_start:pos]
    return prefix if not prefix.strip() else None


def _with_parent(tag_text: str, parent: str) -> str:
    if tag_text.endswith('/>'):
        return tag_text[:-2].rstrip() + f' parent="{parent}"/>'
    return tag_text[:-1].rstrip() + f' parent="{parent}">'


def _collect_ids(xml: str) -> Set[str]:
    ids = set()
    for tag in iter_tags(xml):
        if tag.kind == 'close':
            continue
        match = ID_ATTR_PATTERN.search(tag.text)
        if match:
            ids.add(match.group(3))
    return ids


class StructureFixMixin:
    def _fix_tag_names(self, xml: str) -> str:
        if GENERIC_CELL_TAG_PATTERN.search(xml):
            xml = GENERIC_CELL_TAG_PATTERN.sub(r'<\1mxCell', xml)
            self._record("Fixed <Cell> tags to <mxCell>")

        for wrong, right, name in TAG_TYPOS:
            if wrong.search(xml):
                xml = wrong.sub(right, xml)
                self._record(f"Fixed typo {name} to {right}")
        return xml

    def _fix_unclosed_tags(self, xml: str) -> str:
        """Append closing tags for elements still open at the end of the document."""
        stack: List[str] = []
        open_counts: Counter = Counter()
        close_counts: Counter = Counter()
        for tag in iter_tags(xml):
            if tag.kind == 'close':
                close_counts[tag.name.lower()] += 1
                # Closing tag may not match the innermost open one
                for idx in range(len(stack) - 1, -1, -1):
                    if stack[idx] == tag.name:
                        del stack[idx]
                        break
            elif tag.kind == 'open':
                open_counts[tag.name.lower()] += 1
                stack.append(tag.name)

        if not stack:
            return xml

        # Only close a tag when opens outnumber closes, the stack alone can be
        # fooled by a mismatch elsewhere in the document
        deficit = {name: open_counts[name] - close_counts[name] for name in open_counts}
        to_close = []
        for name in reversed(stack):
            if deficit.get(name.lower(), 0) > 0:
                deficit[name.lower()] -= 1
                to_close.append(name)

        if not to_close:
            return xml
        closing = '\n'.join(f'</{name}>' for name in to_close)
        self._record(f"Closed {len(to_close)} unclosed tag(s): {', '.join(to_close)}")
        return xml.rstrip() + '\n' + closing

    def _fix_duplicate_id_nesting(self, xml: str) -> str:
        """
        Drop a cell opener that repeats the id of the cell opened right before it.

        <mxCell id="X"><mxCell id="X">...</mxCell></mxCell> keeps one cell; the
        surplus closing tag is removed as well.
        """
        splices = []
        stack: List[_OpenElement] = []
        pending_close = 0
        flattened = 0
        prev_tag = None

        for tag in iter_tags(xml):
            if tag.kind == 'open':
                is_cell = tag.name == CELL_TAG and not is_label_cell_tag(tag.text)
                cell_id = get_attribute(tag.text, 'id') if is_cell else None
                if (is_cell and cell_id
                        and prev_tag is not None and prev_tag.kind == 'open'
                        and stack and stack[-1].is_cell and stack[-1].cell_id == cell_id):
                    splices.append((*_removal_span(xml, tag.start, tag.end), ''))
                    pending_close += 1
                    flattened += 1
                else:
                    stack.append(_OpenElement(tag.name, is_cell, cell_id))
            elif tag.kind == 'close':
                pending_close = self._close_element(xml, tag, stack, pending_close, splices)
            prev_tag = tag

        if not flattened:
            return xml
        self._record(f"Flattened {flattened} duplicate-ID nested mxCell(s)")
        return apply_splices(xml, splices)

    def _fix_true_nesting(self, xml: str) -> str:
        """
        Turn cells nested inside another cell into siblings, at any depth.

        A closing tag for the outer cell is inserted right before the inner
        cell, and one later closing tag is suppressed for every insertion.
        An inner cell without a parent attribute inherits the outer cell's
        parent, since both become siblings.
        """
        splices = []
        stack: List[_OpenElement] = []
        pending_close = 0
        flattened = 0

        for tag in iter_tags(xml):
            if tag.kind == 'close':
                pending_close = self._close_element(xml, tag, stack, pending_close, splices)
                continue
            is_cell = tag.name == CELL_TAG and not is_label_cell_tag(tag.text)
            if not is_cell:
                if tag.kind == 'open':
                    stack.append(_OpenElement(tag.name, False))
                continue

            cell_parent = get_attribute(tag.text, 'parent')
            if stack and stack[-1].is_cell:
                outer = stack.pop()
                new_text = tag.text
                if cell_parent is None and outer.parent is not None:
                    new_text = _with_parent(tag.text, outer.parent)
                    cell_parent = outer.parent
                indent = _line_indent(xml, tag.start)
                closing = f'</{CELL_TAG}>\n{indent}' if indent is not None else f'</{CELL_TAG}>'
                splices.append((tag.start, tag.end, closing + new_text))
                pending_close += 1
                flattened += 1

            if tag.kind == 'open':
                stack.append(_OpenElement(tag.name, True, get_attribute(tag.text, 'id'), cell_parent))

        if not flattened:
            return xml
        self._record(f"Fixed {flattened} true nested mxCell(s)")
        return apply_splices(xml, splices)

    def _close_element(self, xml, tag, stack: List[_OpenElement], pending_close: int, splices) -> int:
        """Pop the matching open element, or drop a surplus </mxCell>. Returns the new pending count."""
        if stack and stack[-1].name == tag.name:
            stack.pop()
        elif pending_close and tag.name == CELL_TAG:
            splices.append((*_removal_span(xml, tag.start, tag.end), ''))
            pending_close -= 1
        else:
            for idx in range(len(stack) - 1, -1, -1):
                if stack[idx].name == tag.name:
                    del stack[idx:]
                    break
        return pending_close

    def _fix_duplicate_ids(self, xml: str) -> str:
        """Keep the first occurrence of every id, suffix later ones with _dup<n>."""
        counts: Counter = Counter()
        for tag in iter_tags(xml):
            if tag.kind == 'close':
                continue
            match = ID_ATTR_PATTERN.search(tag.text)
            if match and match.group(3).strip():
                counts[match.group(3)] += 1
        duplicates = {cell_id for cell_id, count in counts.items() if count > 1}
        if not duplicates:
            return xml

        taken = set(counts)
        seen: Counter = Counter()
        next_suffix: Dict[str, int] = {}
        splices = []
        for tag in iter_tags(xml):
            if tag.kind == 'close':
                continue
            match = ID_ATTR_PATTERN.search(tag.text)
            if not match or match.group(3) not in duplicates:
                continue
            cell_id = match.group(3)
            seen[cell_id] += 1
            if seen[cell_id] == 1:
                continue

            suffix = next_suffix.get(cell_id, 1)
            new_id = f'{cell_id}_dup{suffix}'
            while new_id in taken:
                suffix += 1
                new_id = f'{cell_id}_dup{suffix}'
            next_suffix[cell_id] = suffix + 1
            taken.add(new_id)

            new_text = tag.text[:match.start(3)] + new_id + tag.text[match.end(3):]
            splices.append((tag.start, tag.end, new_text))
            if self.verbose:
                print(f"    [Fix] id '{cell_id}' -> '{new_id}'")

        self._record(f"Renamed {len(duplicates)} duplicate ID(s)")
        return apply_splices(xml, splices)

    def _fix_empty_ids(self, xml: str) -> str:
        taken = _collect_ids(xml)
        counter = 0
        splices = []
        for tag in iter_tags(xml):
            if tag.kind == 'close' or tag.name != CELL_TAG:
                continue
            match = ID_ATTR_PATTERN.search(tag.text)
            if not match or match.group(3).strip():
                continue
            counter += 1
            new_id = f'cell_auto_{counter}'
            while new_id in taken:
                counter += 1
                new_id = f'cell_auto_{counter}'
            taken.add(new_id)
            new_text = tag.text[:match.start(2)] + f'"{new_id}"' + tag.text[match.end():]
            splices.append((tag.start, tag.end, new_text))

        if not splices:
            return xml
        self._record(f"Generated {len(splices)} missing ID(s)")
        return apply_splices(xml, splices)
