"""
Id-addressed add/update/delete of single cells.

Operations are applied in order against a parsed tree. A failing operation is
recorded and skipped; the remaining operations still run.
"""

from typing import List, Set, Tuple

from lxml import etree

from .common import (
    CANVAS_CELL_ID,
    CELL_TAG,
    ROOT_CELL_ID,
    CellOperation,
    CellOperationError,
    DiagramMergeError,
)
from .fixer import validate_and_fix_xml
from .merger import EMPTY_DIAGRAM, locate_root_container

PROTECTED_CELL_IDS = (ROOT_CELL_ID, CANVAS_CELL_ID)


def _xml_parser() -> etree.XMLParser:
    return etree.XMLParser(remove_blank_text=True, resolve_entities=False, no_network=True)


def _find_cell(container, cell_id: str):
    for child in container:
        if child.tag == CELL_TAG and child.get('id') == cell_id:
            return child
    return None


def _descendant_ids(container, cell_id: str) -> Set[str]:
    """Ids of cell_id and every cell whose parent chain leads to it."""
    doomed = {cell_id}
    changed = True
    while changed:
        changed = False
        for child in container:
            if child.tag != CELL_TAG:
                continue
            child_id = child.get('id')
            if child_id not in doomed and child.get('parent') in doomed:
                doomed.add(child_id)
                changed = True
    return doomed


class CellOperationApplier:
    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.errors: List[CellOperationError] = []

    def _fail(self, op: CellOperation, message: str):
        self.errors.append(CellOperationError(type=op.type, cell_id=op.cell_id, message=message))
        if self.verbose:
            print(f"  [Skip] {op.type} '{op.cell_id}': {message}")

    def _parse_new_cell(self, op: CellOperation):
        """Repair and parse op.new_xml. Returns the element or None after recording an error."""
        if not op.new_xml or not op.new_xml.strip():
            self._fail(op, f"new_xml is required for {op.type}")
            return None

        repair = validate_and_fix_xml(op.new_xml, verbose=self.verbose)
        if not repair.valid:
            self._fail(op, repair.error)
            return None
        source = repair.fixed or op.new_xml

        try:
            cell = etree.fromstring(source.strip().encode('utf-8'), _xml_parser())
        except etree.XMLSyntaxError as e:
            self._fail(op, f"new_xml is not a single element: {e}")
            return None
        if cell.tag != CELL_TAG:
            self._fail(op, f"new_xml must be an <{CELL_TAG}> element, got <{cell.tag}>")
            return None

        new_id = cell.get('id')
        if not new_id:
            cell.set('id', op.cell_id)
        elif new_id != op.cell_id:
            self._fail(op, f"new_xml id '{new_id}' does not match cell_id '{op.cell_id}'")
            return None
        return cell

    def _add(self, container, op: CellOperation):
        if _find_cell(container, op.cell_id) is not None:
            self._fail(op, "cell already exists")
            return
        cell = self._parse_new_cell(op)
        if cell is not None:
            container.append(cell)

    def _update(self, container, op: CellOperation):
        existing = _find_cell(container, op.cell_id)
        if existing is None:
            self._fail(op, "cell not found")
            return
        cell = self._parse_new_cell(op)
        if cell is not None:
            container.replace(existing, cell)

    def _delete(self, container, op: CellOperation):
        if op.cell_id in PROTECTED_CELL_IDS:
            self._fail(op, "root cells cannot be deleted")
            return
        if _find_cell(container, op.cell_id) is None:
            self._fail(op, "cell not found")
            return
        doomed = _descendant_ids(container, op.cell_id)
        for child in list(container):
            if child.tag == CELL_TAG and child.get('id') in doomed:
                container.remove(child)
        if self.verbose and len(doomed) > 1:
            print(f"  [Delete] '{op.cell_id}' removed with {len(doomed) - 1} child cell(s)")

    def apply(self, xml: str, operations) -> Tuple[str, List[CellOperationError]]:
        self.errors = []
        if not xml or not xml.strip():
            xml = EMPTY_DIAGRAM
        try:
            doc = etree.fromstring(xml.strip().encode('utf-8'), _xml_parser())
        except etree.XMLSyntaxError as e:
            raise DiagramMergeError(f"Error applying cell operations: could not parse diagram: {e}") from e
        container = locate_root_container(doc)

        handlers = {'add': self._add, 'update': self._update, 'delete': self._delete}
        for raw_op in operations:
            op = raw_op if isinstance(raw_op, CellOperation) else CellOperation.from_dict(raw_op)
            handler = handlers.get(op.type)
            if handler is None:
                self._fail(op, f"unknown operation type '{op.type}'")
                continue
            handler(container, op)

        return etree.tostring(doc, encoding='unicode'), list(self.errors)


def apply_cell_operations(xml: str, operations, verbose: bool = False) -> Tuple[str, List[CellOperationError]]:
    """
    Apply add/update/delete operations to the cells of a document.

    Args:
        xml: Current document (empty means the default empty diagram)
        operations: Sequence of CellOperation or dicts with type/cell_id/new_xml
        verbose: Print skipped operations and cascaded deletes

    Returns:
        (result_xml, errors) where errors lists the skipped operations

    Raises:
        DiagramMergeError: the current document cannot be parsed
    """
    return CellOperationApplier(verbose=verbose).apply(xml, operations)
