#!/usr/bin/env python3
"""
Tests for the apply_diagram_edits.py and validate_diagram.py command line tools.

Both scripts must return exit code 1 whenever the diagram could not be
produced, so calling agents do not assume success.
"""

import json
import sys

from _drawio_helpers import SHAPE_CELL, build_model, build_mxfile, cell, cell_ids, find_cell

import apply_diagram_edits  # type: ignore
import validate_diagram  # type: ignore
from drawio_edit.codec import compress_diagram_data, read_diagram_page  # type: ignore


def _run(monkeypatch, module, *args) -> int:
    monkeypatch.setattr(sys, 'argv', [module.__name__ + '.py', *[str(a) for a in args]])
    return module.main()


def _write_two_pages(path):
    """Compressed two-page file: page "One" holds cell 2 (A), page "Two" holds cell 9 (PageTwo)."""
    one = compress_diagram_data(build_model(cell('2', 'A')))
    two = compress_diagram_data(build_model(cell('9', 'PageTwo')))
    path.write_text(
        f'<mxfile><diagram name="One" id="p1">{one}</diagram>'
        f'<diagram name="Two" id="p2">{two}</diagram></mxfile>',
        encoding='utf-8',
    )
    return path


class TestApplyDiagramEdits:
    """Tests for apply_diagram_edits.main"""

    def test_applies_json_edits(self, tmp_path, monkeypatch):
        """Edits from a JSON list are applied and saved next to the input"""
        diagram = tmp_path / 'flow.drawio'
        diagram.write_text(build_mxfile(SHAPE_CELL), encoding='utf-8')
        edits = tmp_path / 'edits.json'
        edits.write_text(json.dumps([{'search': 'value="Start"', 'replace': 'value="Begin"'}]), encoding='utf-8')

        assert _run(monkeypatch, apply_diagram_edits, diagram, edits) == 0

        output = tmp_path / 'flow_edited.drawio'
        assert find_cell(output.read_text(encoding='utf-8'), '2').get('value') == 'Begin'

    def test_jsonl_edits_and_output_option(self, tmp_path, monkeypatch):
        """JSONL edits and -o are supported"""
        diagram = tmp_path / 'flow.drawio'
        diagram.write_text(build_mxfile(SHAPE_CELL), encoding='utf-8')
        edits = tmp_path / 'edits.jsonl'
        edits.write_text(
            json.dumps({'search': 'value="Start"', 'replace': 'value="A"'}) + '\n'
            + json.dumps({'search': 'value="A"', 'replace': 'value="B"'}) + '\n',
            encoding='utf-8',
        )
        out = tmp_path / 'out.drawio'

        assert _run(monkeypatch, apply_diagram_edits, diagram, edits, '-o', out) == 0
        assert find_cell(out.read_text(encoding='utf-8'), '2').get('value') == 'B'

    def test_compressed_input(self, tmp_path, monkeypatch):
        """Compressed pages are decoded, edited and stored compressed again"""
        diagram = tmp_path / 'packed.drawio'
        payload = compress_diagram_data(build_model(SHAPE_CELL))
        diagram.write_text(f'<mxfile><diagram name="Page-1" id="p">{payload}</diagram></mxfile>', encoding='utf-8')
        edits = tmp_path / 'edits.json'
        edits.write_text(json.dumps([{'search': 'value="Start"', 'replace': 'value="Go"'}]), encoding='utf-8')

        assert _run(monkeypatch, apply_diagram_edits, diagram, edits) == 0

        result = (tmp_path / 'packed_edited.drawio').read_text(encoding='utf-8')
        assert result.startswith('<mxfile>')
        assert '<mxGraphModel' not in result
        assert find_cell(read_diagram_page(result), '2').get('value') == 'Go'

    def test_multi_page_file_keeps_other_pages(self, tmp_path, monkeypatch):
        """Only the edited page changes; page names, ids and other pages survive"""
        diagram = _write_two_pages(tmp_path / 'book.drawio')
        edits = tmp_path / 'edits.json'
        edits.write_text(json.dumps([{'search': 'value="A"', 'replace': 'value="B"'}]), encoding='utf-8')

        assert _run(monkeypatch, apply_diagram_edits, diagram, edits) == 0

        result = (tmp_path / 'book_edited.drawio').read_text(encoding='utf-8')
        assert 'name="One"' in result and 'id="p1"' in result
        assert 'name="Two"' in result and 'id="p2"' in result
        assert compress_diagram_data(build_model(cell('9', 'PageTwo'))) in result
        assert find_cell(read_diagram_page(result, 0), '2').get('value') == 'B'
        assert find_cell(read_diagram_page(result, 1), '9').get('value') == 'PageTwo'

    def test_page_option(self, tmp_path, monkeypatch):
        """--page selects which compressed page is edited"""
        diagram = _write_two_pages(tmp_path / 'book.drawio')
        edits = tmp_path / 'edits.json'
        edits.write_text(json.dumps([{'search': 'value="PageTwo"', 'replace': 'value="Second"'}]), encoding='utf-8')

        assert _run(monkeypatch, apply_diagram_edits, diagram, edits, '--page', '2') == 0

        result = (tmp_path / 'book_edited.drawio').read_text(encoding='utf-8')
        assert find_cell(read_diagram_page(result, 0), '2').get('value') == 'A'
        assert find_cell(read_diagram_page(result, 1), '9').get('value') == 'Second'

    def test_missing_page(self, tmp_path, monkeypatch, capsys):
        """A page number past the end is an error"""
        diagram = _write_two_pages(tmp_path / 'book.drawio')
        edits = tmp_path / 'edits.json'
        edits.write_text(json.dumps([{'search': 'value="A"', 'replace': 'value="B"'}]), encoding='utf-8')

        assert _run(monkeypatch, apply_diagram_edits, diagram, edits, '--page', '3') == 1
        assert "Page 3 not found" in capsys.readouterr().err

    def test_dry_run_writes_nothing(self, tmp_path, monkeypatch):
        """--dry-run validates only"""
        diagram = tmp_path / 'flow.drawio'
        diagram.write_text(build_mxfile(SHAPE_CELL), encoding='utf-8')
        edits = tmp_path / 'edits.json'
        edits.write_text(json.dumps([{'search': 'value="Start"', 'replace': 'value="X"'}]), encoding='utf-8')

        assert _run(monkeypatch, apply_diagram_edits, diagram, edits, '--dry-run') == 0
        assert not (tmp_path / 'flow_edited.drawio').exists()

    def test_failed_edit_exit_code(self, tmp_path, monkeypatch, capsys):
        """A search that is not found gives exit code 1"""
        diagram = tmp_path / 'flow.drawio'
        diagram.write_text(build_mxfile(SHAPE_CELL), encoding='utf-8')
        edits = tmp_path / 'edits.json'
        edits.write_text(json.dumps([{'search': '<Missing/>', 'replace': ''}]), encoding='utf-8')

        assert _run(monkeypatch, apply_diagram_edits, diagram, edits) == 1
        assert "Search pattern not found" in capsys.readouterr().out

    def test_strict_flag(self, tmp_path, monkeypatch):
        """--strict rejects ambiguous edits"""
        diagram = tmp_path / 'flow.drawio'
        diagram.write_text(build_mxfile(cell('2', 'Same') + cell('3', 'Same')), encoding='utf-8')
        edits = tmp_path / 'edits.json'
        edits.write_text(json.dumps([{'search': 'value="Same"', 'replace': 'value="X"'}]), encoding='utf-8')

        assert _run(monkeypatch, apply_diagram_edits, diagram, edits, '--strict') == 1
        assert _run(monkeypatch, apply_diagram_edits, diagram, edits) == 0

    def test_missing_file(self, tmp_path, monkeypatch, capsys):
        """Unreadable input is reported on stderr"""
        assert _run(monkeypatch, apply_diagram_edits, tmp_path / 'nope.drawio', tmp_path / 'e.json') == 1
        assert capsys.readouterr().err.startswith("Error:")


class TestValidateDiagram:
    """Tests for validate_diagram.main"""

    def test_valid_file(self, tmp_path, monkeypatch, capsys):
        """A valid document exits 0"""
        diagram = tmp_path / 'ok.drawio'
        diagram.write_text(build_mxfile(SHAPE_CELL), encoding='utf-8')
        assert _run(monkeypatch, validate_diagram, diagram) == 0
        assert "Valid: no fixes needed" in capsys.readouterr().out

    def test_fix_writes_repaired_copy(self, tmp_path, monkeypatch):
        """--fix writes <stem>_fixed next to the input"""
        diagram = tmp_path / 'broken.xml'
        diagram.write_text(build_mxfile(cell('2', 'R&D')), encoding='utf-8')
        assert _run(monkeypatch, validate_diagram, diagram, '--fix') == 0
        fixed = (tmp_path / 'broken_fixed.xml').read_text(encoding='utf-8')
        assert find_cell(fixed, '2').get('value') == 'R&D'

    def test_unrepairable_exit_code(self, tmp_path, monkeypatch, capsys):
        """An unrepairable document exits 1"""
        diagram = tmp_path / 'bad.xml'
        diagram.write_text(cell('2') + '</root>', encoding='utf-8')
        assert _run(monkeypatch, validate_diagram, diagram) == 1
        assert "Invalid:" in capsys.readouterr().out

    def test_merge_into(self, tmp_path, monkeypatch):
        """--merge-into replaces the diagram content with the input cells"""
        current = tmp_path / 'current.drawio'
        current.write_text(build_mxfile(cell('old')), encoding='utf-8')
        fragment = tmp_path / 'cells.xml'
        fragment.write_text(cell('2', 'A') + '<mxCell id="3" val', encoding='utf-8')
        out = tmp_path / 'merged.drawio'

        assert _run(monkeypatch, validate_diagram, fragment, '--fragment', '--merge-into', current, '-o', out) == 0
        assert cell_ids(out.read_text(encoding='utf-8')) == ['0', '1', '2']

    def test_fix_keeps_other_pages(self, tmp_path, monkeypatch):
        """--fix on a compressed page writes the whole file back"""
        diagram = tmp_path / 'book.drawio'
        broken = compress_diagram_data(build_model(cell('2', 'R&D')))
        other = compress_diagram_data(build_model(cell('9', 'PageTwo')))
        diagram.write_text(
            f'<mxfile><diagram name="One" id="p1">{broken}</diagram>'
            f'<diagram name="Two" id="p2">{other}</diagram></mxfile>',
            encoding='utf-8',
        )

        assert _run(monkeypatch, validate_diagram, diagram, '--fix') == 0

        fixed = (tmp_path / 'book_fixed.drawio').read_text(encoding='utf-8')
        assert other in fixed
        assert find_cell(read_diagram_page(fixed, 0), '2').get('value') == 'R&D'
