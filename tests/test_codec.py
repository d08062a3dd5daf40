"""
Tests for draw.io payload decoding and encoding
"""

import base64
import html

import pytest

from _drawio_helpers import SHAPE_CELL, build_model, build_mxfile, cell, find_cell

from drawio_edit.codec import (  # type: ignore
    compress_diagram_data,
    decompress_diagram_data,
    extract_diagram_pages,
    extract_diagram_xml_from_svg,
    extract_mxfile_from_svg,
    read_diagram_page,
    write_diagram_page,
)
from drawio_edit.common import DiagramDecodeError  # type: ignore

MODEL = build_model(SHAPE_CELL.replace('Start', 'Start &amp; 100% done'))


def _compressed_file(*models: str) -> str:
    pages = ''.join(
        f'<diagram name="Page-{i}" id="p{i}">{compress_diagram_data(m)}</diagram>'
        for i, m in enumerate(models, 1)
    )
    return f'<mxfile>{pages}</mxfile>'


def _svg(content: str) -> str:
    return (
        f'<svg xmlns="http://www.w3.org/2000/svg" content="{html.escape(content, quote=True)}">'
        f'<g/></svg>'
    )


class TestCompression:
    """Tests for compress/decompress_diagram_data"""

    def test_round_trip(self):
        """Compressed markup decompresses to the same text"""
        assert decompress_diagram_data(compress_diagram_data(MODEL)) == MODEL

    def test_plain_markup_passes_through(self):
        """Uncompressed markup is returned unchanged"""
        assert decompress_diagram_data(MODEL) == MODEL

    def test_garbage_returns_none(self):
        """Undecodable payloads give None"""
        assert decompress_diagram_data('bm90IGNvbXByZXNzZWQ=') is None

    def test_compressed_payload_is_base64(self):
        """Output is plain base64 text"""
        payload = compress_diagram_data(MODEL)
        assert base64.b64decode(payload)
        assert '<' not in payload


class TestExtractPages:
    """Tests for extract_diagram_pages"""

    def test_plain_document(self):
        """An uncompressed file is one page"""
        doc = build_mxfile(SHAPE_CELL)
        assert extract_diagram_pages(doc) == [doc]

    def test_compressed_pages(self):
        """Every compressed page is decoded in order"""
        second = build_model()
        assert extract_diagram_pages(_compressed_file(MODEL, second)) == [MODEL, second]

    def test_undecodable_page_skipped(self):
        """Broken pages are skipped"""
        content = '<mxfile><diagram id="x">!!!</diagram></mxfile>'
        assert extract_diagram_pages(content) == []


class TestExtractFromSvg:
    """Tests for extract_diagram_xml_from_svg"""

    def test_svg_text(self):
        """The content attribute of an exported SVG is decoded"""
        assert extract_diagram_xml_from_svg(_svg(_compressed_file(MODEL))) == MODEL

    def test_data_uri(self):
        """A base64 SVG data URI is accepted"""
        svg = _svg(_compressed_file(MODEL))
        uri = 'data:image/svg+xml;base64,' + base64.b64encode(svg.encode('utf-8')).decode('ascii')
        assert extract_diagram_xml_from_svg(uri) == MODEL

    def test_missing_content_attribute(self):
        """An SVG that is not a draw.io export is rejected"""
        with pytest.raises(DiagramDecodeError, match="content"):
            extract_diagram_xml_from_svg('<svg xmlns="http://www.w3.org/2000/svg"/>')

    def test_unparseable_svg(self):
        """Broken SVG text is rejected"""
        with pytest.raises(DiagramDecodeError):
            extract_diagram_xml_from_svg('<svg content="x"')

    def test_embedded_mxfile(self):
        """The whole embedded document is available, not just page 1"""
        content = _compressed_file(MODEL, build_model())
        assert extract_mxfile_from_svg(_svg(content)) == content


class TestDiagramPages:
    """Tests for read_diagram_page and write_diagram_page"""

    def test_read_compressed_page_by_index(self):
        """Pages are addressed in document order"""
        content = _compressed_file(build_model(cell('2', 'A')), build_model(cell('9', 'B')))
        assert find_cell(read_diagram_page(content, 1), '9').get('value') == 'B'

    def test_read_plain_page(self):
        """An uncompressed page is returned as its mxGraphModel"""
        page = read_diagram_page(build_mxfile(SHAPE_CELL))
        assert page.startswith('<mxGraphModel')
        assert find_cell(page, '2').get('value') == 'Start'

    def test_index_counts_undecodable_pages(self):
        """A broken page still occupies its slot"""
        content = (
            '<mxfile><diagram id="x">!!!</diagram>'
            f'<diagram id="y">{compress_diagram_data(MODEL)}</diagram></mxfile>'
        )
        assert read_diagram_page(content, 1) == MODEL
        with pytest.raises(DiagramDecodeError, match="could not be decoded"):
            read_diagram_page(content, 0)

    def test_missing_page(self):
        with pytest.raises(DiagramDecodeError, match="Page 2 not found"):
            read_diagram_page(_compressed_file(MODEL), 1)

    def test_write_keeps_other_pages_and_attributes(self):
        """Only the target payload changes, and it stays compressed"""
        other = compress_diagram_data(build_model(cell('9', 'Other')))
        content = (
            f'<mxfile host="app"><diagram name="One" id="p1">{compress_diagram_data(MODEL)}</diagram>'
            f'<diagram name="Two" id="p2">{other}</diagram></mxfile>'
        )
        written = write_diagram_page(content, 0, build_model(cell('2', 'New')))

        assert written.startswith('<mxfile host="app">')
        assert '<diagram name="One" id="p1">' in written
        assert f'<diagram name="Two" id="p2">{other}</diagram>' in written
        assert '<mxGraphModel' not in written
        assert find_cell(read_diagram_page(written, 0), '2').get('value') == 'New'

    def test_write_plain_page_stays_plain(self):
        """An uncompressed page is replaced by the new model element"""
        written = write_diagram_page(build_mxfile(SHAPE_CELL), 0, build_model(cell('2', 'New')))
        assert find_cell(written, '2').get('value') == 'New'
        assert 'name="Page-1"' in written

    def test_write_unparseable_page(self):
        with pytest.raises(DiagramDecodeError):
            write_diagram_page(_compressed_file(MODEL), 0, '<mxGraphModel><root>')
