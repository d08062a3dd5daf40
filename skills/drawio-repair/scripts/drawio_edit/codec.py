"""
Decoding and encoding of draw.io page payloads.

draw.io stores a compressed page as base64(deflate-raw(encodeURIComponent(xml))).
Exported SVG files carry the whole <mxfile> in the `content` attribute of the
<svg> element.
"""

import base64
import binascii
import re
import urllib.parse
import zlib
from typing import List, Optional

from defusedxml import ElementTree as ET
from defusedxml.common import DefusedXmlException
from lxml import etree

from .common import DiagramDecodeError
from .merger import DIAGRAM_TAG, GRAPH_MODEL_TAG, _xml_parser

SVG_DATA_URI_PREFIX = 'data:image/svg+xml;base64,'

# Characters encodeURIComponent leaves alone besides alphanumerics
URI_COMPONENT_SAFE = "-_.!~*'()"

DIAGRAM_ELEMENT_PATTERN = re.compile(r'<diagram\b[^>]*>(.*?)</diagram>', re.DOTALL)


def _looks_like_model(text: str) -> bool:
    return '<mxGraphModel' in text or '<mxCell' in text


def decompress_diagram_data(data: str) -> Optional[str]:
    """
    Decompress a page payload (Base64 + raw Deflate + URL encoding).

    Payloads that already are markup are returned unchanged.

    Returns:
        Page markup, or None if the payload cannot be decoded
    """
    if not data or data.strip().startswith('<'):
        return data
    data = data.strip()
    try:
        decoded_bytes = base64.b64decode(data, validate=False)
    except (binascii.Error, ValueError):
        return None

    # Raw deflate is what draw.io writes; zlib and gzip framings also occur
    for wbits in (-zlib.MAX_WBITS, zlib.MAX_WBITS, 16 + zlib.MAX_WBITS):
        try:
            inflated = zlib.decompress(decoded_bytes, wbits)
        except zlib.error:
            continue
        text = urllib.parse.unquote(inflated.decode('utf-8', errors='replace'))
        if _looks_like_model(text):
            return text
    return None


def compress_diagram_data(xml: str) -> str:
    """Compress page markup the way draw.io does, inverse of decompress_diagram_data."""
    encoded = urllib.parse.quote(xml, safe=URI_COMPONENT_SAFE).encode('utf-8')
    compressor = zlib.compressobj(9, zlib.DEFLATED, -zlib.MAX_WBITS)
    deflated = compressor.compress(encoded) + compressor.flush()
    return base64.b64encode(deflated).decode('ascii')


def extract_diagram_pages(content: str) -> List[str]:
    """
    Extract the markup of every page in a .drawio document.

    Plain documents (already containing <mxGraphModel>) yield themselves as a
    single page. Compressed <diagram> payloads are decompressed; pages that
    fail to decode are skipped.
    """
    pages: List[str] = []
    if '<mxGraphModel' in content:
        pages.append(content)
        return pages

    for diagram_data in DIAGRAM_ELEMENT_PATTERN.findall(content):
        diagram_data = diagram_data.strip()
        if not diagram_data:
            continue
        decompressed = decompress_diagram_data(diagram_data)
        if decompressed:
            pages.append(decompressed)
    return pages


def extract_mxfile_from_svg(svg: str) -> str:
    """
    Return the <mxfile> document embedded in a draw.io SVG export.

    Args:
        svg: SVG text, or a data:image/svg+xml;base64 URI

    Raises:
        DiagramDecodeError: the SVG cannot be read or has no content attribute
    """
    if svg.startswith(SVG_DATA_URI_PREFIX):
        try:
            svg = base64.b64decode(svg[len(SVG_DATA_URI_PREFIX):]).decode('utf-8')
        except (binascii.Error, ValueError) as e:
            raise DiagramDecodeError(f"Invalid SVG data URI: {e}") from e

    try:
        svg_root = ET.fromstring(svg)
    except (ET.ParseError, DefusedXmlException) as e:
        raise DiagramDecodeError(f"Could not parse SVG: {e}") from e

    content = svg_root.get('content')
    if not content:
        raise DiagramDecodeError("SVG element does not have a 'content' attribute.")
    return content


def extract_diagram_xml_from_svg(svg: str) -> str:
    """
    Recover the first page's markup from a draw.io SVG export.

    Raises:
        DiagramDecodeError: the SVG carries no decodable diagram
    """
    pages = extract_diagram_pages(extract_mxfile_from_svg(svg))
    if not pages:
        raise DiagramDecodeError("No diagram element found")
    return pages[0]


def _parse_page_xml(xml: str, what: str):
    try:
        return etree.fromstring(xml.strip().encode('utf-8'), _xml_parser())
    except etree.XMLSyntaxError as e:
        raise DiagramDecodeError(f"Could not parse {what}: {e}") from e


def _find_page(doc, index: int):
    diagrams = doc.findall(DIAGRAM_TAG)
    if not 0 <= index < len(diagrams):
        raise DiagramDecodeError(f"Page {index + 1} not found, the file has {len(diagrams)} page(s)")
    return diagrams[index]


def read_diagram_page(content: str, index: int = 0) -> str:
    """
    Return the markup of one page of an <mxfile>, decompressing it if needed.

    Pages are counted in document order, including pages that fail to decode,
    so the index stays valid for write_diagram_page.

    Raises:
        DiagramDecodeError: the file does not parse, or the page is missing or undecodable
    """
    diagram = _find_page(_parse_page_xml(content, "diagram file"), index)
    model = diagram.find(GRAPH_MODEL_TAG)
    if model is not None:
        return etree.tostring(model, encoding='unicode')

    page = decompress_diagram_data((diagram.text or '').strip())
    if not page:
        raise DiagramDecodeError(f"Page {index + 1} could not be decoded")
    return page


def write_diagram_page(content: str, index: int, page_xml: str) -> str:
    """
    Put new page markup into one <diagram> of an <mxfile>.

    Other pages and the <diagram> attributes (name, id) are kept as they are.
    A page stored compressed is compressed again.
    """
    doc = _parse_page_xml(content, "diagram file")
    diagram = _find_page(doc, index)
    model = _parse_page_xml(page_xml, f"page {index + 1}")

    compressed = diagram.find(GRAPH_MODEL_TAG) is None
    for child in list(diagram):
        diagram.remove(child)
    if compressed:
        diagram.text = compress_diagram_data(etree.tostring(model, encoding='unicode'))
    else:
        diagram.text = None
        diagram.append(model)
    return etree.tostring(doc, encoding='unicode')
