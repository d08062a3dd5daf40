"""
Streaming preview support: turns a possibly truncated model fragment into a
closed <root> container holding only complete cells.
"""

from typing import List

from xml_utils import apply_splices, get_attribute, tokenize_markup

from .common import CELL_TAG, POINT_LIST_TAG, POINT_TAG, ROOT_CONTAINER_TAG

CELL_LINE_INDENT = '    '


def extract_complete_cells(xml_string: str) -> List[str]:
    """
    Return the source text of every syntactically complete top-level cell.

    A cell is complete when it is self-closing or its matching </mxCell> has
    arrived. Anything still open at the end of the input is omitted.
    """
    cells = []
    cell_start = None
    depth = 0
    for token in tokenize_markup(xml_string):
        if token.name != CELL_TAG:
            continue
        if cell_start is None:
            if token.kind == 'self_closing':
                cells.append(token.text)
            elif token.kind == 'open':
                cell_start = token.start
                depth = 1
        elif token.kind == 'open':
            depth += 1
        elif token.kind == 'close':
            depth -= 1
            if depth == 0:
                cells.append(xml_string[cell_start:token.end])
                cell_start = None
    return cells


def strip_orphan_points(cell_xml: str) -> str:
    """
    Remove <mxPoint/> elements that have no `as` role and sit outside an <Array>.

    draw.io refuses such points ("Could not add object mxPoint").
    """
    splices = []
    array_depth = 0
    for token in tokenize_markup(cell_xml):
        if token.name == POINT_LIST_TAG:
            if token.kind == 'open':
                array_depth += 1
            elif token.kind == 'close':
                array_depth = max(0, array_depth - 1)
        elif (token.name == POINT_TAG and token.kind == 'self_closing'
                and array_depth == 0 and get_attribute(token.text, 'as') is None):
            splices.append((token.start, token.end, ''))
    return apply_splices(cell_xml, splices) if splices else cell_xml


def convert_to_legal_xml(xml_string: str) -> str:
    """
    Convert a possibly incomplete fragment into a closed <root> of complete cells.

    Args:
        xml_string: Fragment text, possibly cut off mid-stream

    Returns:
        "<root>\\n ...cells... \\n</root>", empty root when no cell is complete
    """
    lines = [f'<{ROOT_CONTAINER_TAG}>']
    for cell in extract_complete_cells(xml_string or ''):
        cell = strip_orphan_points(cell)
        for line in cell.split('\n'):
            if line.strip():
                lines.append(CELL_LINE_INDENT + line.strip())
    lines.append(f'</{ROOT_CONTAINER_TAG}>')
    return '\n'.join(lines)
