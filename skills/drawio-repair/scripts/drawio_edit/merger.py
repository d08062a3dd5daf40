"""
Full-replacement merge of a regenerated node set into an existing document.

Used for "regenerate the whole diagram" requests. This is not a diff: every
existing child of the <root> container is discarded.
"""

import copy
import re

from lxml import etree

from .common import (
    CANVAS_CELL_ID,
    CELL_TAG,
    ROOT_CELL_ID,
    ROOT_CONTAINER_TAG,
    DiagramMergeError,
)

GRAPH_MODEL_TAG = 'mxGraphModel'
DIAGRAM_TAG = 'diagram'

EMPTY_MODEL = '<mxGraphModel><root><mxCell id="0"/><mxCell id="1" parent="0"/></root></mxGraphModel>'
EMPTY_DIAGRAM = f'<mxfile><diagram name="Page-1" id="page-1">{EMPTY_MODEL}</diagram></mxfile>'

# Matches: <root> or <root ...> opening tag
ROOT_OPEN_PATTERN = re.compile(r'<root[\s>]')
ROOT_TAGS_PATTERN = re.compile(r'</?root>')


def _xml_parser() -> etree.XMLParser:
    return etree.XMLParser(remove_blank_text=True, resolve_entities=False, no_network=True)


def _parse(xml: str, what: str):
    try:
        return etree.fromstring(xml.strip().encode('utf-8'), _xml_parser())
    except etree.XMLSyntaxError as e:
        raise DiagramMergeError(f"Error replacing nodes: could not parse {what}: {e}") from e


def wrap_with_mxfile(xml: str) -> str:
    """
    Wrap markup with the full mxfile structure required by draw.io.

    Handles bare <root> content, an <mxGraphModel>, or an existing <mxfile>
    (returned unchanged). Empty input yields the default empty diagram.
    """
    if not xml or not xml.strip():
        return EMPTY_DIAGRAM
    if '<mxfile' in xml:
        return xml
    if f'<{GRAPH_MODEL_TAG}' in xml:
        return f'<mxfile><diagram name="Page-1" id="page-1">{xml}</diagram></mxfile>'

    root_content = ROOT_TAGS_PATTERN.sub('', xml).strip()
    return (
        f'<mxfile><diagram name="Page-1" id="page-1"><{GRAPH_MODEL_TAG}><root>'
        f'{root_content}</root></{GRAPH_MODEL_TAG}></diagram></mxfile>'
    )


def locate_root_container(doc):
    """
    Find the <root> cell container of a parsed document, creating it if needed.

    Accepts documents shaped as <mxfile>, <mxGraphModel> or a bare <root>.
    """
    if doc.tag == ROOT_CONTAINER_TAG:
        return doc

    model = doc if doc.tag == GRAPH_MODEL_TAG else doc.find(f'.//{GRAPH_MODEL_TAG}')
    if model is None:
        host = doc.find(f'.//{DIAGRAM_TAG}')
        if host is None:
            host = doc
        # Compressed page payload is superseded by the new model
        host.text = None
        model = etree.SubElement(host, GRAPH_MODEL_TAG)

    root = model.find(ROOT_CONTAINER_TAG)
    if root is None:
        root = etree.SubElement(model, ROOT_CONTAINER_TAG)
    return root


def _has_cell(container, cell_id: str) -> bool:
    return any(child.tag == CELL_TAG and child.get('id') == cell_id for child in container)


def replace_nodes(current_xml: str, nodes: str) -> str:
    """
    Replace the entire node set of a diagram with a new one.

    After copying the new cells, the root cell (id "0") is inserted at the
    very front and the canvas cell (id "1", parent "0") right after it when
    the new node set lacks them.

    Args:
        current_xml: Current document (empty means the default empty diagram)
        nodes: New cells, either bare siblings or wrapped in <root>/<mxGraphModel>

    Returns:
        Serialized document with the new node set

    Raises:
        DiagramMergeError: nodes missing or either input cannot be parsed
    """
    if not nodes or not nodes.strip():
        raise DiagramMergeError("Error replacing nodes: new nodes must be provided")
    if not current_xml or not current_xml.strip():
        current_xml = EMPTY_DIAGRAM

    doc = _parse(current_xml, "current diagram")

    if not ROOT_OPEN_PATTERN.search(nodes):
        nodes = f'<root>{nodes}</root>'
    nodes_doc = _parse(nodes, "new nodes")
    nodes_root = nodes_doc if nodes_doc.tag == ROOT_CONTAINER_TAG else nodes_doc.find(f'.//{ROOT_CONTAINER_TAG}')
    if nodes_root is None:
        raise DiagramMergeError("Invalid nodes: Could not find or create <root> element")

    current_root = locate_root_container(doc)
    for child in list(current_root):
        current_root.remove(child)
    current_root.text = None

    for child in nodes_root:
        current_root.append(copy.deepcopy(child))

    if not _has_cell(current_root, ROOT_CELL_ID):
        cell0 = etree.Element(CELL_TAG)
        cell0.set('id', ROOT_CELL_ID)
        current_root.insert(0, cell0)

    if not _has_cell(current_root, CANVAS_CELL_ID):
        cell1 = etree.Element(CELL_TAG)
        cell1.set('id', CANVAS_CELL_ID)
        cell1.set('parent', ROOT_CELL_ID)
        position = next(
            idx for idx, child in enumerate(current_root)
            if child.tag == CELL_TAG and child.get('id') == ROOT_CELL_ID
        )
        current_root.insert(position + 1, cell1)

    return etree.tostring(doc, encoding='unicode')


def extract_cells_xml(xml: str) -> str:
    """Serialize the children of a document's <root> container as sibling markup."""
    doc = _parse(xml, "diagram")
    container = locate_root_container(doc)
    return ''.join(etree.tostring(child, encoding='unicode') for child in container)
